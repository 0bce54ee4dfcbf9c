# receipt_ocr/core/dependencies.py
"""
Centralized dependency injection for FastAPI.
The job queue is built once in the application lifespan and kept on
``app.state``; routes receive it through ``get_job_queue``.
"""

from typing import Annotated, Optional

from fastapi import Header, Request

from receipt_ocr.services.job_queue import JobQueue
from receipt_ocr.core.exceptions import internal_server_http_error
from receipt_ocr.core.logging import get_logger

logger = get_logger(__name__)


def get_job_queue(request: Request) -> JobQueue:
    """Get the process-wide job queue created at startup."""
    queue: Optional[JobQueue] = getattr(request.app.state, "job_queue", None)
    if queue is None:
        logger.error("Job queue requested before startup")
        raise internal_server_http_error("OCR job queue is not running")
    return queue


def get_current_owner(
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Optional[str]:
    """
    Identity of the caller as established by the upstream auth layer.
    No header means an anonymous caller.
    """
    if x_user_id is None:
        return None
    return x_user_id.strip() or None
