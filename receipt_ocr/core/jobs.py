# receipt_ocr/core/jobs.py
import json
import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Union

from pydantic import ValidationError as PydanticValidationError

from receipt_ocr.core.exceptions import JobPersistenceError
from receipt_ocr.core.logging import LoggerMixin
from receipt_ocr.schemas.job import Job


class JobIdCounter:
    """Issues decimal string ids, never reusing one seen before."""

    def __init__(self, start: int = 1) -> None:
        self._next = start

    def next(self) -> str:
        job_id = str(self._next)
        self._next += 1
        return job_id

    def observe(self, job_id: str) -> None:
        """Advance past an id loaded from disk. Non-numeric ids are ignored."""
        try:
            value = int(job_id)
        except (TypeError, ValueError):
            return
        self._next = max(self._next, value + 1)

    @property
    def peek(self) -> int:
        return self._next


class JobStore(LoggerMixin):
    """
    Flat-file job table: a single JSON array, rewritten in full on every save.
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)

    def load(self) -> List[Job]:
        """Read the table. A missing file yields an empty list."""
        if not self.path.exists():
            return []

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, list):
                raise JobPersistenceError(
                    "Job table is not a JSON array", {"path": str(self.path)}
                )
            return [Job.model_validate(record) for record in data]
        except (OSError, ValueError, PydanticValidationError, JobPersistenceError) as e:
            # ValueError covers json.JSONDecodeError
            self.logger.error(
                "Failed to load persisted OCR jobs", path=str(self.path), error=str(e)
            )
            return []

    def save(self, jobs: Iterable[Job]) -> bool:
        """
        Overwrite the table with ``jobs``. Failures are logged and reported
        through the return value, never raised.
        """
        try:
            self._write([job.to_record() for job in jobs])
            return True
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(
                "Failed to persist OCR jobs", path=str(self.path), error=str(e)
            )
            return False

    def _write(self, records: list) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(records, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise
