# receipt_ocr/core/config.py
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, Set
from receipt_ocr.core.exceptions import ConfigurationError


TEST_MODE_MOCK = "mock"


class Settings(BaseSettings):
    # uploads / job table
    UPLOADS_DIR: str = "uploads"
    OCR_JOBS_FILE: str = "uploads/ocr-jobs.json"
    OCR_MAX_FILE_SIZE_MB: int = 10
    ALLOWED_MIME_TYPES: Set[str] = {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/tiff",
        "application/pdf",
    }

    # "mock" short-circuits every job to a fixed result without running OCR
    OCR_TEST_MODE: Optional[str] = None

    # execution pool
    OCR_MAX_WORKERS: int = 2
    OCR_JOB_TIMEOUT_SECONDS: Optional[float] = None

    # tesseract
    OCR_LANGUAGE: str = "eng"
    OCR_PDF_DPI: int = 200

    # rate limiting (slowapi syntax, per client IP)
    RATE_LIMIT_ENABLED: bool = True
    OCR_UPLOAD_RATE_LIMIT: str = "10/minute"

    # logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @field_validator("OCR_MAX_WORKERS", "OCR_MAX_FILE_SIZE_MB", "OCR_PDF_DPI")
    @classmethod
    def validate_positive(cls, v: int, info) -> int:
        if v < 1:
            raise ConfigurationError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("OCR_JOB_TIMEOUT_SECONDS")
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ConfigurationError("OCR_JOB_TIMEOUT_SECONDS must be positive when set")
        return v

    @field_validator("OCR_JOBS_FILE", "UPLOADS_DIR")
    @classmethod
    def validate_path(cls, v: str, info) -> str:
        if not v:
            raise ConfigurationError(f"{info.field_name} is required")
        return v

    @property
    def test_mode_enabled(self) -> bool:
        return (self.OCR_TEST_MODE or "").lower() == TEST_MODE_MOCK

    @property
    def max_file_size_bytes(self) -> int:
        return self.OCR_MAX_FILE_SIZE_MB * 1024 * 1024


@lru_cache()
def get_settings() -> Settings:
    """
    Cached factory. FastAPI resolves get_settings() through Depends and
    lru_cache guarantees a single Settings instance per process.
    """
    return Settings()
