"""Uploads routes for the interactive (web) surface."""
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile

from quota_uploads.config import settings
from quota_uploads.models.upload import Provenance
from quota_uploads.models.user import User
from quota_uploads.routes.deps import (
    destroy_upload_batch,
    get_current_user,
    get_upload_repository,
    ingest_item_from_upload_file,
    to_batch_response,
    to_upload_response,
)
from quota_uploads.schemas.common import DeleteResponse
from quota_uploads.schemas.upload import BatchDeleteRequest, BatchDeleteResponse, BatchUploadResponse, UploadResponse
from quota_uploads.services.batch_ingestion import MAX_FILES_PER_BATCH, BatchIngestionEngine
from quota_uploads.services.upload_repository import UploadRepository

router = APIRouter(prefix="/uploads", tags=["uploads"])


@router.get("", response_model=list[UploadResponse])
async def list_uploads(
    query: Optional[str] = Query(None, description="Filename filter"),
    page: int = Query(1, ge=1),
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """List the caller's uploads, most recent first."""
    rows = await uploads.list_for_user(user.id, query=query, page=page, per_page=settings.UPLOADS_PAGE_SIZE)
    return [to_upload_response(u) for u in rows]


@router.post("", response_model=BatchUploadResponse, status_code=201)
async def create_uploads(
    response: Response,
    files: list[UploadFile] = File(default=[]),
    file: Optional[UploadFile] = File(default=None),
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Upload one or more files. Accepts files (multiple) and/or file."""
    selected = [f for f in files if f.filename]
    if file is not None and file.filename:
        selected.append(file)

    if not selected:
        raise HTTPException(status_code=400, detail="Please select at least one file to upload.")
    if len(selected) > MAX_FILES_PER_BATCH:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files selected. Max {MAX_FILES_PER_BATCH} files allowed per upload.",
        )

    items = [await ingest_item_from_upload_file(f) for f in selected]
    engine = BatchIngestionEngine(user, Provenance.WEB, uploads)
    result = await engine.process_batch(items)

    if not result.uploads:
        response.status_code = 422
    return to_batch_response(result)


@router.delete("/destroy_batch", response_model=BatchDeleteResponse)
async def delete_uploads(
    body: BatchDeleteRequest,
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Delete several uploads at once. Unknown or foreign ids are reported, not fatal."""
    return await destroy_upload_batch(body, user, uploads)


@router.delete("/{upload_id}", response_model=DeleteResponse)
async def delete_upload(
    upload_id: UUID,
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Delete an upload and purge its blob."""
    upload = await uploads.get_for_user(user.id, upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")

    await uploads.destroy(upload)
    return {"deleted": True, "id": str(upload_id)}
