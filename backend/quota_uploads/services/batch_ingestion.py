"""Batch ingestion with quota admission and post-hoc reconciliation.

There is no per-user lock. A batch reads usage once, admits items against
that baseline plus its own running total, commits each accepted upload, and
then re-reads the real usage. If concurrent batches committed in the meantime
and the account ended up over its limit, this batch evicts its own newest
uploads until the overage is covered.

Phases:
    1. admission      - per-item size / running-total checks, ingest in input order
    2. reconciliation - re-read usage, evict newest-first while over the limit
"""
import enum
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, NamedTuple, Optional

from quota_uploads.config import settings
from quota_uploads.models.upload import Provenance, Upload
from quota_uploads.models.user import User
from quota_uploads.services.errors import UploadValidationError
from quota_uploads.services.quota import QuotaPolicy, QuotaService, human_size
from quota_uploads.services.upload_repository import UploadRepository

logger = logging.getLogger(__name__)

MAX_FILES_PER_BATCH = settings.MAX_FILES_PER_BATCH

QUOTA_ALREADY_EXCEEDED_REASON = "Storage quota already exceeded"
INGESTION_ERROR_REASON = "Upload error: the file could not be stored"
REMOVED_POST_HOC_REASON = "Removed: concurrent uploads exceeded quota"


class FailureKind(str, enum.Enum):
    FILE_TOO_LARGE = "file_too_large"
    WOULD_EXCEED_QUOTA = "would_exceed_quota"
    QUOTA_ALREADY_EXCEEDED = "quota_already_exceeded"
    INGESTION_ERROR = "ingestion_error"
    REMOVED_POST_HOC = "removed_post_hoc"


QUOTA_FAILURES = frozenset({
    FailureKind.FILE_TOO_LARGE,
    FailureKind.WOULD_EXCEED_QUOTA,
    FailureKind.QUOTA_ALREADY_EXCEEDED,
    FailureKind.REMOVED_POST_HOC,
})


@dataclass(frozen=True)
class IngestItem:
    """One file to ingest. Bytes are only read once the item is admitted."""
    filename: str
    size: int
    content_type: Optional[str]
    read: Callable[[], Awaitable[bytes]]

    @classmethod
    def from_bytes(cls, filename: str, data: bytes, content_type: Optional[str] = None) -> "IngestItem":
        async def _read() -> bytes:
            return data
        return cls(filename=filename, size=len(data), content_type=content_type, read=_read)


@dataclass(frozen=True)
class FailedUpload:
    filename: str
    reason: str
    kind: FailureKind
    position: int


@dataclass(frozen=True)
class BatchResult:
    uploads: tuple[Upload, ...]
    failed: tuple[FailedUpload, ...]

    def summary(self) -> str:
        """Human-readable outcome, e.g. for a flash message."""
        parts = []
        if self.uploads:
            parts.append(f"{len(self.uploads)} file(s) uploaded successfully")
        if self.failed:
            parts.append(f"{len(self.failed)} file(s) failed to upload")
        message = ", ".join(parts)
        if self.failed:
            failures = ", ".join(f"{f.filename} ({f.reason})" for f in self.failed)
            message = f"{message}. Failed: {failures}"
        return message


class _Accepted(NamedTuple):
    position: int
    filename: str
    upload: Upload


class BatchIngestionEngine:
    """Validates, ingests and reconciles one batch for one user."""

    def __init__(
        self,
        user: User,
        provenance: Provenance,
        uploads: UploadRepository,
        quota: Optional[QuotaService] = None,
    ):
        self.user_id = user.id
        self.provenance = Provenance(provenance)
        self.uploads = uploads
        self.quota = quota or QuotaService(user, uploads)

    async def process_batch(self, items: Iterable[IngestItem]) -> BatchResult:
        items = list(items)
        if not items:
            raise UploadValidationError("Please select at least one file to upload.")

        # Unknown tier raises here, before anything is written
        policy = self.quota.resolve_policy()
        baseline = await self.quota.storage_used()

        if baseline >= policy.max_total_storage:
            logger.info(
                "User %s is over quota (%d/%d bytes), rejecting batch of %d",
                self.user_id, baseline, policy.max_total_storage, len(items),
            )
            failed = tuple(
                FailedUpload(item.filename, QUOTA_ALREADY_EXCEEDED_REASON, FailureKind.QUOTA_ALREADY_EXCEEDED, i)
                for i, item in enumerate(items)
            )
            return BatchResult(uploads=(), failed=failed)

        accepted, failed = await self._admit(items, policy, baseline)
        if accepted:
            accepted = await self._reconcile(accepted, failed, policy)

        failed.sort(key=lambda f: f.position)
        return BatchResult(
            uploads=tuple(a.upload for a in accepted),
            failed=tuple(failed),
        )

    async def _admit(
        self, items: list[IngestItem], policy: QuotaPolicy, baseline: int
    ) -> tuple[list[_Accepted], list[FailedUpload]]:
        accepted: list[_Accepted] = []
        failed: list[FailedUpload] = []
        batch_bytes_used = 0

        for position, item in enumerate(items):
            if item.size > policy.max_file_size:
                failed.append(FailedUpload(
                    item.filename,
                    f"File size ({human_size(item.size)}) exceeds limit of {human_size(policy.max_file_size)}",
                    FailureKind.FILE_TOO_LARGE,
                    position,
                ))
                continue

            projected_total = baseline + batch_bytes_used + item.size
            if projected_total > policy.max_total_storage:
                remaining = max(policy.max_total_storage - baseline - batch_bytes_used, 0)
                failed.append(FailedUpload(
                    item.filename,
                    f"Would exceed storage quota ({human_size(remaining)} remaining)",
                    FailureKind.WOULD_EXCEED_QUOTA,
                    position,
                ))
                continue

            try:
                upload = await self._ingest(item)
            except Exception:
                logger.exception("Failed to ingest %r for user %s", item.filename, self.user_id)
                failed.append(FailedUpload(item.filename, INGESTION_ERROR_REASON, FailureKind.INGESTION_ERROR, position))
                continue

            accepted.append(_Accepted(position, item.filename, upload))
            batch_bytes_used += upload.byte_size

        return accepted, failed

    async def _ingest(self, item: IngestItem) -> Upload:
        data = await item.read()
        return await self.uploads.ingest(
            user_id=self.user_id,
            data=data,
            filename=item.filename,
            declared_content_type=item.content_type,
            provenance=self.provenance,
        )

    async def _reconcile(
        self, accepted: list[_Accepted], failed: list[FailedUpload], policy: QuotaPolicy
    ) -> list[_Accepted]:
        actual = await self.quota.storage_used()
        if actual <= policy.max_total_storage:
            return accepted

        overage = actual - policy.max_total_storage
        logger.warning(
            "User %s over quota by %d bytes after batch (concurrent uploads), evicting newest uploads",
            self.user_id, overage,
        )

        reclaimed = 0
        removed_ids = set()
        for entry in reversed(accepted):
            if reclaimed >= overage:
                break
            upload_id, byte_size = entry.upload.id, entry.upload.byte_size
            try:
                await self.uploads.destroy(entry.upload)
            except Exception:
                logger.exception("Failed to evict upload %s during quota reconciliation", upload_id)
                continue

            reclaimed += byte_size
            removed_ids.add(upload_id)
            failed.append(FailedUpload(entry.filename, REMOVED_POST_HOC_REASON, FailureKind.REMOVED_POST_HOC, entry.position))
            logger.info("Evicted upload %s (%d bytes) for user %s", upload_id, byte_size, self.user_id)

        if reclaimed < overage:
            logger.warning(
                "User %s still over quota by %d bytes after evicting this batch's uploads",
                self.user_id, overage - reclaimed,
            )

        return [a for a in accepted if a.upload.id not in removed_ids]
