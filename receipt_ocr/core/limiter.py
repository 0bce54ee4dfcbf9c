# receipt_ocr/core/limiter.py
"""
Per-client rate limiting for the upload endpoint (slowapi, keyed by IP).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from receipt_ocr.core.config import Settings
from receipt_ocr.core.logging import get_logger


logger = get_logger(__name__)


def build_limiter(settings: Settings) -> Limiter:
    """One limiter per app instance; counters live in process memory."""
    limiter = Limiter(
        key_func=get_remote_address,
        enabled=settings.RATE_LIMIT_ENABLED,
        storage_uri="memory://",
    )
    logger.info(
        "Rate limiting configured",
        enabled=settings.RATE_LIMIT_ENABLED,
        upload_limit=settings.OCR_UPLOAD_RATE_LIMIT,
    )
    return limiter
