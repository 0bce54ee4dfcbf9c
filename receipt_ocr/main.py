# receipt_ocr/main.py

import os
import re
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Optional

import aiofiles
import aiofiles.os
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from receipt_ocr.core.config import Settings, get_settings
from receipt_ocr.core.dependencies import get_current_owner, get_job_queue
from receipt_ocr.core.exceptions import (
    ConfigurationError,
    ValidationError,
    forbidden_http_error,
    internal_server_http_error,
    not_found_http_error,
    validation_http_error,
)
from receipt_ocr.core.limiter import build_limiter
from receipt_ocr.core.logging import get_logger, setup_logging
from receipt_ocr.schemas.job import now_millis
from receipt_ocr.schemas.ocr import Health, JobAccepted, JobView
from receipt_ocr.services.job_queue import JobQueue


logger = get_logger(__name__)

UPLOAD_CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def safe_filename(filename: str) -> str:
    name = _UNSAFE_CHARS.sub("_", Path(filename).name).strip("._")
    return name or "upload"


async def save_upload(upload: UploadFile, destination: Path, max_bytes: int) -> int:
    """Stream ``upload`` to ``destination``. Raises ValidationError when too large."""
    written = 0
    try:
        async with aiofiles.open(destination, "wb") as out:
            while True:
                chunk = await upload.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > max_bytes:
                    raise ValidationError(
                        f"File too large. Maximum size is {max_bytes // (1024 * 1024)} MB",
                        {"max_bytes": max_bytes},
                    )
                await out.write(chunk)
    except BaseException:
        try:
            await aiofiles.os.remove(destination)
        except OSError:
            pass
        raise
    finally:
        await upload.close()
    return written


def create_app(queue: Optional[JobQueue] = None) -> FastAPI:
    """
    Build the API. ``queue`` replaces the settings-built job queue, which
    lets tests run the service with a fake OCR engine.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        """Application lifespan - startup and shutdown"""
        logger.info("Starting receipt OCR API")

        try:
            settings = get_settings()
            setup_logging(log_level=settings.LOG_LEVEL, enable_json=settings.LOG_JSON)
            Path(settings.UPLOADS_DIR).mkdir(parents=True, exist_ok=True)

            job_queue = queue or JobQueue.from_settings(settings)
            await job_queue.start()
            _app.state.job_queue = job_queue
            logger.info(
                "OCR job queue started",
                test_mode=job_queue.test_mode,
                jobs=len(job_queue.jobs()),
            )
        except ConfigurationError as e:
            logger.error("Configuration error during startup", error=str(e))
            raise
        except Exception as e:
            logger.error("Unexpected error during startup", error=str(e))
            raise

        try:
            yield
        finally:
            logger.info("Shutting down receipt OCR API")
            await job_queue.shutdown()
            _app.state.job_queue = None

    app = FastAPI(title="Receipt OCR API", lifespan=lifespan)

    settings = get_settings()
    limiter = build_limiter(settings)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    @app.get("/health", summary="Liveness")
    async def health(
        job_queue: Annotated[JobQueue, Depends(get_job_queue)],
    ) -> Health:
        return Health(
            status="ok", jobs=len(job_queue.jobs()), test_mode=job_queue.test_mode
        )

    @app.post("/api/ocr", summary="Enqueue OCR Job")
    @limiter.limit(settings.OCR_UPLOAD_RATE_LIMIT)
    async def enqueue_ocr(
        request: Request,
        job_queue: Annotated[JobQueue, Depends(get_job_queue)],
        cfg: Annotated[Settings, Depends(get_settings)],
        owner_id: Annotated[Optional[str], Depends(get_current_owner)],
        file: Optional[UploadFile] = File(None),
    ) -> JSONResponse:
        try:
            if file is None or not file.filename:
                logger.warning("OCR upload attempted without file")
                raise validation_http_error("No file uploaded")

            filename = file.filename
            if file.content_type not in cfg.ALLOWED_MIME_TYPES:
                logger.warning(
                    "Unsupported file type attempted",
                    filename=filename,
                    content_type=file.content_type,
                )
                raise validation_http_error(
                    "Unsupported file type. Please upload an image or PDF.",
                    {"content_type": file.content_type},
                )

            uploads_dir = Path(cfg.UPLOADS_DIR)
            uploads_dir.mkdir(parents=True, exist_ok=True)
            destination = uploads_dir / (
                f"{now_millis()}-{os.urandom(3).hex()}-{safe_filename(filename)}"
            )

            try:
                size = await save_upload(file, destination, cfg.max_file_size_bytes)
            except ValidationError as e:
                logger.warning("Upload rejected", filename=filename, error=e.message)
                raise validation_http_error(e.message, e.details)

            logger.info("Upload saved", filename=filename, path=str(destination), size=size)

            job = job_queue.submit(str(destination.resolve()), filename, owner_id)
            accepted = JobAccepted(job_id=job.id, status=job.status)
            return JSONResponse(status_code=200, content=accepted.model_dump(by_alias=True))

        except HTTPException:
            raise
        except Exception as e:
            logger.error(
                "Failed to enqueue OCR job",
                filename=getattr(file, "filename", "unknown"),
                error=str(e),
            )
            raise internal_server_http_error("Failed to enqueue OCR job")

    @app.get("/api/ocr/{job_id}", summary="Get OCR Job")
    async def get_ocr_job(
        job_id: str,
        job_queue: Annotated[JobQueue, Depends(get_job_queue)],
        owner_id: Annotated[Optional[str], Depends(get_current_owner)],
    ) -> JobView:
        job = job_queue.get(job_id)
        if job is None:
            logger.warning("OCR job not found", job_id=job_id)
            raise not_found_http_error("Job", job_id)
        if job.owner_id and job.owner_id != owner_id:
            logger.warning(
                "OCR job requested by another caller", job_id=job_id, owner_id=owner_id
            )
            raise forbidden_http_error("Job", job_id)

        return JobView(id=job.id, status=job.status, result=job.result, error=job.error)

    return app


app = create_app()
