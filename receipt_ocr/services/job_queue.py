# receipt_ocr/services/job_queue.py
"""
OCR job queue.

Bookkeeping (submit, get, persistence, state transitions) runs on the event
loop. Text extraction runs in a bounded executor so CPU-heavy recognition
never blocks the loop or the HTTP layer. Every status change rewrites the
flat job table, and the uploaded file is removed once the job is terminal.
"""

import asyncio
import os
from concurrent.futures import BrokenExecutor, Executor, ProcessPoolExecutor
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set

from receipt_ocr.core.config import Settings
from receipt_ocr.core.exceptions import JobTimeoutError, OcrEngineError
from receipt_ocr.core.jobs import JobIdCounter, JobStore
from receipt_ocr.core.logging import LoggerMixin
from receipt_ocr.schemas.job import ACTIVE_STATUSES, Job
from receipt_ocr.services.ocr_engine import recognize


TEST_OCR_TEXT = "TEST_OCR_TEXT"

OcrEngine = Callable[[str], Any]
ExecutorFactory = Callable[[], Executor]


@dataclass(frozen=True)
class OcrOutcome:
    """Normalized engine result: exactly one of text / error is set."""

    text: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def normalize_payload(payload: Any) -> OcrOutcome:
    """
    Engines may answer with a bare string, ``{"text": ...}``,
    ``{"error": ...}`` or nothing at all.
    """
    if payload is None:
        return OcrOutcome(text="")
    if isinstance(payload, str):
        return OcrOutcome(text=payload)
    if isinstance(payload, dict):
        error = payload.get("error")
        if error:
            return OcrOutcome(error=str(error))
        text = payload.get("text")
        if text is None:
            return OcrOutcome(text="")
        return OcrOutcome(text=text if isinstance(text, str) else str(text))
    raise OcrEngineError(
        f"Unexpected OCR payload type: {type(payload).__name__}",
        {"payload_type": type(payload).__name__},
    )


def cleanup_file(file_path: Optional[str]) -> bool:
    """Best-effort unlink. Returns False instead of raising."""
    if not file_path:
        return False
    try:
        os.unlink(file_path)
        return True
    except OSError:
        return False


class JobQueue(LoggerMixin):
    """In-memory OCR job table backed by a flat JSON file."""

    def __init__(
        self,
        store: JobStore,
        counter: Optional[JobIdCounter] = None,
        engine: OcrEngine = recognize,
        executor_factory: Optional[ExecutorFactory] = None,
        test_mode: bool = False,
        timeout: Optional[float] = None,
        isolated_executor_factory: Optional[ExecutorFactory] = None,
    ) -> None:
        self.store = store
        self.counter = counter or JobIdCounter()
        self.engine = engine
        self.executor_factory = executor_factory or partial(
            ProcessPoolExecutor, max_workers=2
        )
        # single-use worker for jobs caught in another job's pool crash
        self.isolated_executor_factory = isolated_executor_factory or partial(
            ProcessPoolExecutor, max_workers=1
        )
        self.test_mode = test_mode
        self.timeout = timeout

        self._jobs: Dict[str, Job] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._executor: Optional[Executor] = None
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "JobQueue":
        return cls(
            store=JobStore(settings.OCR_JOBS_FILE),
            counter=JobIdCounter(),
            engine=partial(
                recognize, language=settings.OCR_LANGUAGE, pdf_dpi=settings.OCR_PDF_DPI
            ),
            executor_factory=partial(
                ProcessPoolExecutor, max_workers=settings.OCR_MAX_WORKERS
            ),
            test_mode=settings.test_mode_enabled,
            timeout=settings.OCR_JOB_TIMEOUT_SECONDS,
        )

    # ------------------------------------------------------------------ public

    async def start(self) -> None:
        """
        Load the persisted table and resume unfinished work.

        Jobs left ``queued`` or ``processing`` by a previous process are reset
        to ``queued`` and dispatched again from scratch.
        """
        resumed: List[Job] = []
        for job in self.store.load():
            self.counter.observe(job.id)
            if job.status in ACTIVE_STATUSES:
                job.status, job.result, job.error = "queued", None, None
                resumed.append(job)
            self._jobs[job.id] = job

        self.logger.info(
            "OCR job table loaded",
            path=str(self.store.path),
            jobs=len(self._jobs),
            resumed=len(resumed),
            next_id=self.counter.peek,
        )

        if resumed:
            self._persist()
        for job in resumed:
            self._dispatch(job)

    def submit(
        self, file_path: str, original_name: str, owner_id: Optional[str] = None
    ) -> Job:
        """
        Register a job for ``file_path`` and schedule its processing.

        The queue takes ownership of the file and deletes it once the job
        ends. Must be called from the event loop thread.
        """
        job = Job(
            id=self.counter.next(),
            file_path=file_path,
            original_name=original_name,
            owner_id=owner_id,
        )
        self._jobs[job.id] = job
        self.logger.info(
            "OCR job created", job_id=job.id, filename=original_name, owner_id=owner_id
        )

        if self.test_mode:
            self._complete(job, OcrOutcome(text=TEST_OCR_TEXT))
            return job

        self._dispatch(job)
        self._persist()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(str(job_id))

    def jobs(self) -> List[Job]:
        return list(self._jobs.values())

    async def wait_idle(self) -> None:
        """Wait until every dispatched job has reached a terminal state."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Stop the execution pool. Jobs still running stay ``processing`` on
        disk and are retried by the next ``start``.
        """
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        self._persist()
        self.logger.info("OCR job queue stopped", jobs=len(self._jobs))

    # ---------------------------------------------------------------- dispatch

    def _dispatch(self, job: Job) -> None:
        if self.test_mode:
            self._complete(job, OcrOutcome(text=TEST_OCR_TEXT))
            return
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._process(job))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, job: Job) -> None:
        job.status = "processing"
        self._persist()
        self.logger.info("OCR job processing", job_id=job.id, path=job.file_path)

        try:
            executor = self._get_executor()
        except Exception as e:
            outcome = self._start_failure(job, e)
        else:
            try:
                outcome = await self._run_unit(executor, job)
            except BrokenExecutor as e:
                # the shared pool died; this job's own worker may not be the cause
                self._discard_executor(executor)
                self.logger.warning(
                    "OCR worker pool broke, re-running job in its own worker",
                    job_id=job.id,
                    error=str(e),
                )
                outcome = await self._run_isolated(job)

        self._complete(job, outcome)

    async def _run_isolated(self, job: Job) -> OcrOutcome:
        try:
            executor = self.isolated_executor_factory()
        except Exception as e:
            return self._start_failure(job, e)
        try:
            return await self._run_unit(executor, job)
        except BrokenExecutor as e:
            return OcrOutcome(
                error=f"OCR worker terminated abnormally before reporting a result: {e}"
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    async def _run_unit(self, executor: Executor, job: Job) -> OcrOutcome:
        """
        Run the engine for ``job`` on ``executor`` and classify the answer.
        ``BrokenExecutor`` is left to the caller.
        """
        try:
            future = asyncio.get_running_loop().run_in_executor(
                executor, self.engine, job.file_path
            )
        except BrokenExecutor:
            raise
        except Exception as e:
            return self._start_failure(job, e)

        try:
            payload = await self._wait(future)
            return normalize_payload(payload)
        except BrokenExecutor:
            raise
        except Exception as e:
            return OcrOutcome(error=str(e) or type(e).__name__)

    async def _wait(self, future: "asyncio.Future[Any]") -> Any:
        if self.timeout is None:
            return await future
        try:
            return await asyncio.wait_for(future, self.timeout)
        except asyncio.TimeoutError:
            # an engine raising TimeoutError itself completes the future
            if not future.cancelled():
                raise
            raise JobTimeoutError(
                f"OCR timed out after {self.timeout:g} seconds",
                {"timeout": self.timeout},
            )

    def _start_failure(self, job: Job, error: Exception) -> OcrOutcome:
        self.logger.error("Failed to start OCR worker", job_id=job.id, error=str(error))
        return OcrOutcome(error=f"Failed to start OCR worker: {error}")

    def _complete(self, job: Job, outcome: OcrOutcome) -> None:
        """Apply a terminal transition, persist, then release the upload."""
        if job.is_terminal:
            return

        if outcome.ok:
            job.status, job.result, job.error = "done", outcome.text, None
            self.logger.info(
                "OCR job done", job_id=job.id, text_length=len(outcome.text or "")
            )
        else:
            job.status, job.result, job.error = "failed", None, outcome.error
            self.logger.warning("OCR job failed", job_id=job.id, error=outcome.error)

        self._persist()
        if not cleanup_file(job.file_path):
            self.logger.debug("Upload not removed", job_id=job.id, path=job.file_path)

    # ----------------------------------------------------------------- helpers

    def _get_executor(self) -> Executor:
        if self._closed:
            raise RuntimeError("OCR job queue is shut down")
        if self._executor is None:
            self._executor = self.executor_factory()
        return self._executor

    def _discard_executor(self, executor: Executor) -> None:
        # a broken pool refuses all further work; the next job gets a new one
        if self._executor is executor:
            self._executor = None
        executor.shutdown(wait=False, cancel_futures=True)
        self.logger.warning("OCR worker pool replaced after abnormal termination")

    def _persist(self) -> None:
        self.store.save(self._jobs.values())
