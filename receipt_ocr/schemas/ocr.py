# receipt_ocr/schemas/ocr.py

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from receipt_ocr.schemas.job import JobStatus


class JobAccepted(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: JobStatus


class JobView(BaseModel):
    id: str
    status: JobStatus
    result: Optional[str]
    error: Optional[str]


class Health(BaseModel):
    status: str
    jobs: int
    test_mode: bool
