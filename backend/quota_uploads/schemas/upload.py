"""Upload request/response schemas."""
import uuid
from typing import Optional
from datetime import datetime
from quota_uploads.schemas.base import CamelModel, CamelORMModel


class UploadResponse(CamelORMModel):
    id: uuid.UUID
    filename: str
    size: int
    content_type: str
    reference: str
    url: str
    provenance: str
    created_at: datetime


class FailedUploadResponse(CamelModel):
    filename: str
    reason: str


class BatchUploadResponse(CamelModel):
    message: str = ""
    uploads: list[UploadResponse] = []
    failed: list[FailedUploadResponse] = []


class UrlUploadRequest(CamelModel):
    url: str = ""
    filename: Optional[str] = None


class RenameRequest(CamelModel):
    filename: str = ""


class QuotaUsage(CamelModel):
    storage_used: int
    storage_limit: int
    quota_tier: str
    percentage_used: float


class QuotaErrorResponse(CamelModel):
    error: str
    quota: Optional[QuotaUsage] = None


class BatchDeleteRequest(CamelModel):
    ids: list[uuid.UUID] = []


class BatchDeleteResponse(CamelModel):
    deleted: list[uuid.UUID] = []
    not_found: list[uuid.UUID] = []
