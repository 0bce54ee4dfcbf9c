import threading
from concurrent.futures import ThreadPoolExecutor
from functools import partial

import pytest

from receipt_ocr.core.config import get_settings
from receipt_ocr.core.jobs import JobIdCounter, JobStore
from receipt_ocr.services.job_queue import JobQueue


@pytest.fixture
def jobs_file(tmp_path):
    return tmp_path / "state" / "ocr-jobs.json"


@pytest.fixture
def upload(tmp_path):
    """Factory for files the queue will take ownership of."""

    def _make(name="a.png", content=b"\x89PNG fake"):
        path = tmp_path / "uploads" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
        return path

    return _make


@pytest.fixture
def make_queue(jobs_file):
    """Queue running its engine on threads so fakes need no pickling."""

    def _make(engine=lambda path: {"text": ""}, **kwargs):
        kwargs.setdefault("executor_factory", partial(ThreadPoolExecutor, max_workers=2))
        kwargs.setdefault(
            "isolated_executor_factory", partial(ThreadPoolExecutor, max_workers=1)
        )
        return JobQueue(
            store=JobStore(jobs_file), counter=JobIdCounter(), engine=engine, **kwargs
        )

    return _make


@pytest.fixture
def release():
    """Event that hanging fake engines wait on; always set at teardown."""
    event = threading.Event()
    yield event
    event.set()


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    monkeypatch.setenv("UPLOADS_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("OCR_JOBS_FILE", str(tmp_path / "uploads" / "ocr-jobs.json"))
    monkeypatch.setenv("OCR_MAX_FILE_SIZE_MB", "1")
    monkeypatch.delenv("OCR_TEST_MODE", raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()
