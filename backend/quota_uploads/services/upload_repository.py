"""Persistence for upload records.

Every write commits immediately. Concurrent batches coordinate only through
what is committed here, so nothing is held back in an open transaction.
"""
import logging
import uuid
from typing import Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import InvalidRequestError
from sqlalchemy.ext.asyncio import AsyncSession

from quota_uploads.models.upload import Provenance, Upload
from quota_uploads.services.content_store import LocalContentStore, StoredBlob
from quota_uploads.services.identity import generate_upload_id, renamed_filename, storage_key

logger = logging.getLogger(__name__)


class UploadRepository:
    def __init__(self, db: AsyncSession, content_store: LocalContentStore):
        self.db = db
        self.content_store = content_store

    async def create(
        self,
        upload_id: uuid.UUID,
        user_id: uuid.UUID,
        blob: StoredBlob,
        filename: str,
        provenance: Provenance,
        original_url: Optional[str] = None,
    ) -> Upload:
        """Insert the record for an already-stored blob."""
        upload = Upload(
            id=upload_id,
            user_id=user_id,
            blob_key=blob.key,
            filename=filename.strip()[:500],
            byte_size=blob.byte_size,
            content_type=blob.content_type,
            checksum=blob.checksum,
            provenance=Provenance(provenance),
            original_url=original_url,
        )
        self.db.add(upload)
        await self._commit()
        return upload

    async def ingest(
        self,
        user_id: uuid.UUID,
        data: bytes,
        filename: str,
        declared_content_type: Optional[str],
        provenance: Provenance,
        original_url: Optional[str] = None,
    ) -> Upload:
        """Store bytes and create the record that points at them.

        The id is generated first so the storage key is fixed before the
        write. If the record cannot be created the blob is purged again.
        """
        upload_id = generate_upload_id()
        key = storage_key(upload_id, filename)

        blob = await self.content_store.put(data, filename, declared_content_type, key)
        try:
            return await self.create(
                upload_id=upload_id,
                user_id=user_id,
                blob=blob,
                filename=filename,
                provenance=provenance,
                original_url=original_url,
            )
        except Exception:
            await self.content_store.delete(key)
            raise

    async def destroy(self, upload: Upload) -> None:
        """Delete the record, then purge its blob.

        An already-missing blob is fine: the end state (no record, no blob)
        is the same either way.
        """
        blob_key = upload.blob_key
        await self.db.delete(upload)
        await self._commit()
        await self.content_store.delete(blob_key)

    async def destroy_many(
        self, user_id: uuid.UUID, upload_ids: list[uuid.UUID]
    ) -> tuple[list[uuid.UUID], list[uuid.UUID]]:
        """Destroy the caller's uploads among upload_ids.

        Returns (deleted, not_found). Ids owned by someone else count as not found.
        """
        wanted = list(dict.fromkeys(upload_ids))
        if not wanted:
            return [], []

        result = await self.db.execute(
            select(Upload).where(Upload.user_id == user_id, Upload.id.in_(wanted))
        )
        owned = {upload.id: upload for upload in result.scalars().all()}

        deleted = []
        for upload_id in wanted:
            upload = owned.get(upload_id)
            if upload is None:
                continue
            await self.destroy(upload)
            deleted.append(upload_id)

        not_found = [upload_id for upload_id in wanted if upload_id not in owned]
        logger.info("Batch delete for user %s: %d deleted, %d not found", user_id, len(deleted), len(not_found))
        return deleted, not_found

    async def sum_storage_bytes(self, user_id: uuid.UUID) -> int:
        """Fresh aggregate of the user's stored bytes. Never cached."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Upload.byte_size), 0)).where(Upload.user_id == user_id)
        )
        return int(result.scalar_one())

    async def get_for_user(self, user_id: uuid.UUID, upload_id: uuid.UUID) -> Optional[Upload]:
        result = await self.db.execute(
            select(Upload).where(Upload.id == upload_id, Upload.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_for_user(
        self,
        user_id: uuid.UUID,
        query: Optional[str] = None,
        page: int = 1,
        per_page: int = 50,
    ) -> list[Upload]:
        """Most recent first, optionally filtered by filename substring."""
        statement = select(Upload).where(Upload.user_id == user_id)
        if query:
            statement = statement.where(Upload.filename.ilike(f"%{query}%"))
        statement = (
            statement.order_by(desc(Upload.created_at), desc(Upload.id))
            .offset((max(page, 1) - 1) * per_page)
            .limit(per_page)
        )
        result = await self.db.execute(statement)
        return list(result.scalars().all())

    async def rename(self, upload: Upload, new_filename: str) -> Upload:
        """Change the display filename. The blob key stays where it is."""
        old_filename = upload.filename
        upload.filename = renamed_filename(new_filename, old_filename)
        await self._commit()
        logger.info("Renamed upload %s: %r -> %r", upload.id, old_filename, upload.filename)
        return upload

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            await self._reload_expired()
            raise

    async def _reload_expired(self) -> None:
        """Reload everything a rollback expired.

        Expired attributes cannot be lazy-loaded on an async session.
        """
        for instance in list(self.db.identity_map.values()):
            try:
                await self.db.refresh(instance)
            except InvalidRequestError:
                # row no longer exists
                self.db.expunge(instance)
