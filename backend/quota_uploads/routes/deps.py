"""Shared route dependencies and response helpers."""
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from quota_uploads.config import settings
from quota_uploads.database import get_db
from quota_uploads.models.upload import Upload
from quota_uploads.models.user import User
from quota_uploads.schemas.upload import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    BatchUploadResponse,
    FailedUploadResponse,
    UploadResponse,
)
from quota_uploads.services.batch_ingestion import BatchResult, IngestItem
from quota_uploads.services.content_store import LocalContentStore, get_content_store
from quota_uploads.services.errors import UploadValidationError
from quota_uploads.services.identity import FALLBACK_FILENAME
from quota_uploads.services.upload_repository import UploadRepository


async def get_current_user(
    x_user_id: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Resolve the caller. Authentication happens upstream and forwards the user id."""
    try:
        user_id = uuid.UUID(x_user_id or "")
    except ValueError:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_upload_repository(
    db: AsyncSession = Depends(get_db),
    content_store: LocalContentStore = Depends(get_content_store),
) -> UploadRepository:
    return UploadRepository(db, content_store)


async def ingest_item_from_upload_file(file: UploadFile) -> IngestItem:
    filename = file.filename or FALLBACK_FILENAME
    if file.size is None:
        return IngestItem.from_bytes(filename, await file.read(), file.content_type)
    return IngestItem(filename=filename, size=file.size, content_type=file.content_type, read=file.read)


def to_upload_response(upload: Upload) -> UploadResponse:
    return UploadResponse(
        id=upload.id,
        filename=upload.filename,
        size=upload.byte_size,
        content_type=upload.content_type,
        reference=upload.blob_key,
        url=upload.url,
        provenance=upload.provenance.value,
        created_at=upload.created_at,
    )


def to_batch_response(result: BatchResult) -> BatchUploadResponse:
    return BatchUploadResponse(
        message=result.summary(),
        uploads=[to_upload_response(u) for u in result.uploads],
        failed=[FailedUploadResponse(filename=f.filename, reason=f.reason) for f in result.failed],
    )


async def destroy_upload_batch(
    body: BatchDeleteRequest, user: User, uploads: UploadRepository
) -> BatchDeleteResponse:
    """Shared by the web and API batch-delete routes."""
    if not body.ids:
        raise UploadValidationError("Missing ids parameter")
    if len(body.ids) > settings.MAX_UPLOADS_PER_BATCH_DELETE:
        raise HTTPException(
            status_code=400,
            detail=f"Too many uploads: maximum {settings.MAX_UPLOADS_PER_BATCH_DELETE} per batch delete, got {len(body.ids)}",
        )

    deleted, not_found = await uploads.destroy_many(user.id, body.ids)
    return BatchDeleteResponse(deleted=deleted, not_found=not_found)
