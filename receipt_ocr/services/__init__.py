from .job_queue import JobQueue, OcrOutcome, normalize_payload
from .ocr_engine import recognize

__all__ = [
    "JobQueue",
    "OcrOutcome",
    "normalize_payload",
    "recognize",
]
