"""Programmatic upload API (v4)."""
from typing import Optional
from uuid import UUID
from fastapi import APIRouter, Depends, File, Header, HTTPException, Response, UploadFile

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
from quota_uploads.schemas.upload import (
    BatchDeleteRequest,
    BatchDeleteResponse,
    BatchUploadResponse,
    QuotaUsage,
    RenameRequest,
    UploadResponse,
    UrlUploadRequest,
)
from quota_uploads.services.batch_ingestion import (
    MAX_FILES_PER_BATCH,
    QUOTA_FAILURES,
    BatchIngestionEngine,
    FailureKind,
)
from quota_uploads.services.errors import (
    FileTooLargeError,
    IngestionError,
    QuotaAlreadyExceededError,
    QuotaExceededError,
    UploadValidationError,
    WouldExceedQuotaError,
)
from quota_uploads.services.quota import QuotaService, human_size
from quota_uploads.services.remote_fetch import RemoteFetchIngestor
from quota_uploads.services.upload_repository import UploadRepository

router = APIRouter(prefix="/api/v4", tags=["api"])

_QUOTA_ERRORS = {
    FailureKind.FILE_TOO_LARGE: FileTooLargeError,
    FailureKind.WOULD_EXCEED_QUOTA: WouldExceedQuotaError,
    FailureKind.QUOTA_ALREADY_EXCEEDED: QuotaAlreadyExceededError,
    FailureKind.REMOVED_POST_HOC: QuotaExceededError,
}


@router.post("/upload", response_model=UploadResponse, status_code=201)
async def create_upload(
    file: Optional[UploadFile] = File(default=None),
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Upload a single file."""
    if file is None or not file.filename:
        raise UploadValidationError("Missing file parameter")

    item = await ingest_item_from_upload_file(file)
    quota = QuotaService(user, uploads)
    policy = quota.resolve_policy()

    if item.size > policy.max_file_size:
        raise FileTooLargeError(
            f"File size exceeds your limit of {human_size(policy.max_file_size)} per file",
            usage=await quota.current_usage(),
        )
    if not await quota.can_upload(item.size):
        usage = await quota.current_usage()
        raise WouldExceedQuotaError(usage.would_exceed_message(), usage=usage)

    engine = BatchIngestionEngine(user, Provenance.API, uploads, quota=quota)
    result = await engine.process_batch([item])
    if result.uploads:
        return to_upload_response(result.uploads[0])

    failure = result.failed[0]
    if failure.kind in QUOTA_FAILURES:
        raise _QUOTA_ERRORS[failure.kind](failure.reason, usage=await quota.current_usage())
    raise IngestionError(failure.reason)


@router.post("/uploads", response_model=BatchUploadResponse, status_code=201)
async def create_uploads(
    response: Response,
    files: list[UploadFile] = File(default=[]),
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Upload a batch of files. 201 if anything was stored, 422 otherwise."""
    if not files:
        raise UploadValidationError("Missing files parameter")
    if len(files) > MAX_FILES_PER_BATCH:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files: maximum {MAX_FILES_PER_BATCH} files per batch, got {len(files)}",
        )

    items = [await ingest_item_from_upload_file(f) for f in files]
    engine = BatchIngestionEngine(user, Provenance.API, uploads)
    result = await engine.process_batch(items)

    if not result.uploads:
        response.status_code = 422
    return to_batch_response(result)


@router.post("/upload_from_url", response_model=UploadResponse, status_code=201)
async def create_upload_from_url(
    body: UrlUploadRequest,
    x_download_authorization: Optional[str] = Header(default=None),
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Download a URL into the caller's uploads."""
    if not body.url.strip():
        raise UploadValidationError("Missing url parameter")

    async with RemoteFetchIngestor(user, Provenance.URL, uploads) as fetcher:
        upload = await fetcher.ingest_from_url(
            body.url,
            authorization=x_download_authorization,
            filename=body.filename,
            original_url=body.url,
        )
    return to_upload_response(upload)


@router.delete("/uploads/batch", response_model=BatchDeleteResponse)
async def delete_uploads(
    body: BatchDeleteRequest,
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    return await destroy_upload_batch(body, user, uploads)


@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload(
    upload_id: UUID,
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    upload = await uploads.get_for_user(user.id, upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")
    return to_upload_response(upload)


@router.patch("/uploads/{upload_id}/rename", response_model=UploadResponse)
async def rename_upload(
    upload_id: UUID,
    body: RenameRequest,
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Change an upload's display filename. Keeps the old extension if none is given."""
    new_filename = body.filename.strip()
    if not new_filename:
        raise UploadValidationError("Missing filename parameter")

    upload = await uploads.get_for_user(user.id, upload_id)
    if not upload:
        raise HTTPException(status_code=404, detail="Upload not found")

    upload = await uploads.rename(upload, new_filename)
    return to_upload_response(upload)


@router.get("/quota", response_model=QuotaUsage)
async def get_quota(
    user: User = Depends(get_current_user),
    uploads: UploadRepository = Depends(get_upload_repository),
):
    """Current storage usage against the caller's tier."""
    usage = await QuotaService(user, uploads).current_usage()
    return QuotaUsage(**usage.as_dict())
