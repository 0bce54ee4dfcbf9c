from concurrent.futures import ProcessPoolExecutor
from functools import partial

import fitz

from receipt_ocr.core.config import Settings
from receipt_ocr.core.jobs import JobStore
from receipt_ocr.services.job_queue import JobQueue
from tests.process_engines import crash_or_echo


async def test_settings_built_queue_extracts_pdf_text(jobs_file, upload):
    path = upload("receipt.pdf", b"")
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), "Invoice #1")
    doc.save(str(path))
    doc.close()

    queue = JobQueue.from_settings(
        Settings(OCR_JOBS_FILE=str(jobs_file), OCR_MAX_WORKERS=1)
    )
    job = queue.submit(str(path), "receipt.pdf", "42")
    await queue.wait_idle()
    await queue.shutdown()

    assert job.status == "done"
    assert "Invoice #1" in job.result
    assert job.error is None
    assert not path.exists()


async def test_worker_crash_only_fails_its_own_job(jobs_file, upload):
    queue = JobQueue(
        store=JobStore(jobs_file),
        engine=crash_or_echo,
        executor_factory=partial(ProcessPoolExecutor, max_workers=2),
    )

    good = queue.submit(str(upload("good.png")), "good.png")
    crashed = queue.submit(str(upload("crash.png")), "crash.png")
    await queue.wait_idle()

    later = queue.submit(str(upload("later.png")), "later.png")
    await queue.wait_idle()
    await queue.shutdown()

    assert crashed.status == "failed"
    assert "terminated abnormally" in crashed.error
    assert crashed.result is None
    assert (good.status, good.result, good.error) == ("done", "fine", None)
    assert (later.status, later.result) == ("done", "fine")
