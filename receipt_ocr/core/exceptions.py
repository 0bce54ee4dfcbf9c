# receipt_ocr/core/exceptions.py
"""
Custom exceptions for the receipt OCR service.
Domain errors carry a message plus structured details; the HTTP layer turns
them into structured FastAPI exceptions.
"""

from typing import Optional, Dict, Any
from fastapi import HTTPException


class OcrServiceError(Exception):
    """Base exception for all receipt OCR operations."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(OcrServiceError):
    """Raised when an upload is rejected before reaching the queue."""

    pass


class ConfigurationError(OcrServiceError):
    """Raised when application configuration is invalid."""

    pass


class OcrEngineError(OcrServiceError):
    """Raised when the OCR engine reports a failure for a file."""

    pass


class JobTimeoutError(OcrServiceError):
    """Raised when a job exceeds the configured OCR timeout."""

    pass


class JobPersistenceError(OcrServiceError):
    """Raised when the job table cannot be read from or written to disk."""

    pass


# HTTP Exception factories for FastAPI
def create_http_exception(
    status_code: int, message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a structured HTTP exception."""
    detail = {"message": message}
    if details:
        detail["details"] = details
    return HTTPException(status_code=status_code, detail=detail)


def validation_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 400 validation error."""
    return create_http_exception(400, message, details)


def forbidden_http_error(resource: str, identifier: str) -> HTTPException:
    """Create a 403 error for resources owned by another caller."""
    return create_http_exception(
        403,
        f"Not authorized to view this {resource.lower()}",
        {"resource": resource, "identifier": identifier},
    )


def not_found_http_error(resource: str, identifier: str) -> HTTPException:
    """Create a 404 not found error."""
    return create_http_exception(
        404, f"{resource} not found", {"resource": resource, "identifier": identifier}
    )


def internal_server_http_error(
    message: str, details: Optional[Dict[str, Any]] = None
) -> HTTPException:
    """Create a 500 internal server error."""
    return create_http_exception(500, f"Internal server error: {message}", details)
