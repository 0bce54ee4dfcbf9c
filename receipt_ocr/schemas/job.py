# receipt_ocr/schemas/job.py

import time
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# Job status type
JobStatus = Literal["queued", "processing", "done", "failed"]

ACTIVE_STATUSES = ("queued", "processing")
TERMINAL_STATUSES = ("done", "failed")


def now_millis() -> int:
    return int(time.time() * 1000)


class Job(BaseModel):
    """One OCR job. Persisted with camelCase keys in the flat job table."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_path: str = Field(alias="filePath")
    original_name: str = Field(alias="originalName")
    # older tables stored the owner under "userId"
    owner_id: Optional[str] = Field(
        default=None,
        alias="ownerId",
        validation_alias=AliasChoices("ownerId", "userId", "owner_id"),
    )
    status: JobStatus = "queued"
    result: Optional[str] = None
    error: Optional[str] = None
    created_at: int = Field(default_factory=now_millis, alias="createdAt")

    @field_validator("id", "owner_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v):
        return str(v) if isinstance(v, int) else v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_record(self) -> dict:
        """Serialize for the flat job table."""
        return self.model_dump(by_alias=True)
