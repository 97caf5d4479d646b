"""Single-item ingestion from a remote URL, using aiohttp.

Quota is checked three times:
    - before downloading, from the HEAD Content-Length (best effort, skipped
      when the HEAD fails or reports no length)
    - after downloading, against the real byte count
    - after committing, against the real account total (closes the race with
      concurrent batches the same way batch reconciliation does)
"""
import asyncio
import logging
from typing import Optional

import aiohttp

from quota_uploads.config import settings
from quota_uploads.models.upload import Provenance, Upload
from quota_uploads.models.user import User
from quota_uploads.services.errors import (
    FileTooLargeError,
    QuotaExceededError,
    RemoteFetchError,
    UploadValidationError,
    WouldExceedQuotaError,
)
from quota_uploads.services.identity import extract_filename_from_url
from quota_uploads.services.quota import QuotaPolicy, QuotaService, human_size
from quota_uploads.services.upload_repository import UploadRepository

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _too_large_message(size: int, policy: QuotaPolicy) -> str:
    return f"File too large: {human_size(size)} exceeds limit of {human_size(policy.max_file_size)}"


class RemoteFetchIngestor:
    """Downloads a URL into the user's uploads.

    Supports async context manager for connection pooling across several
    fetches. Falls back to a per-call session if used without ``async with``.
    """

    def __init__(
        self,
        user: User,
        provenance: Provenance,
        uploads: UploadRepository,
        quota: Optional[QuotaService] = None,
        open_timeout: float = settings.REMOTE_FETCH_OPEN_TIMEOUT,
        timeout: float = settings.REMOTE_FETCH_TIMEOUT,
        max_redirects: int = settings.REMOTE_FETCH_MAX_REDIRECTS,
    ):
        self.user_id = user.id
        self.provenance = Provenance(provenance)
        self.uploads = uploads
        self.quota = quota or QuotaService(user, uploads)
        self.max_redirects = max_redirects
        self._timeout = aiohttp.ClientTimeout(total=timeout, connect=open_timeout)
        self._session: Optional[aiohttp.ClientSession] = None

    async def open(self) -> None:
        if not self._session:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "RemoteFetchIngestor":
        await self.open()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def ingest_from_url(
        self,
        url: str,
        authorization: Optional[str] = None,
        filename: Optional[str] = None,
        original_url: Optional[str] = None,
    ) -> Upload:
        if not url or not url.strip():
            raise UploadValidationError("Missing url parameter")
        url = url.strip()

        if self._session:
            return await self._ingest(self._session, url, authorization, filename, original_url)
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            return await self._ingest(session, url, authorization, filename, original_url)

    async def _ingest(
        self,
        session: aiohttp.ClientSession,
        url: str,
        authorization: Optional[str],
        filename: Optional[str],
        original_url: Optional[str],
    ) -> Upload:
        policy = self.quota.resolve_policy()
        headers = {"Authorization": authorization} if authorization else {}

        await self._pre_check_quota(session, url, headers, policy)
        data, declared_type = await self._download(session, url, headers, policy)

        if not await self.quota.can_upload(len(data)):
            usage = await self.quota.current_usage()
            raise WouldExceedQuotaError(usage.would_exceed_message(), usage=usage)

        upload = await self.uploads.ingest(
            user_id=self.user_id,
            data=data,
            filename=filename or extract_filename_from_url(url),
            declared_content_type=declared_type,
            provenance=self.provenance,
            original_url=original_url,
        )

        usage = await self.quota.current_usage()
        if usage.storage_used > usage.storage_limit:
            logger.warning(
                "Upload %s pushed user %s over quota (%d/%d bytes), removing it",
                upload.id, self.user_id, usage.storage_used, usage.storage_limit,
            )
            await self.uploads.destroy(upload)
            raise QuotaExceededError("Storage quota exceeded", usage=await self.quota.current_usage())

        logger.info("Fetched %s into upload %s (%d bytes)", url, upload.id, upload.byte_size)
        return upload

    async def _pre_check_quota(
        self, session: aiohttp.ClientSession, url: str, headers: dict, policy: QuotaPolicy
    ) -> None:
        """Fail fast on an advertised Content-Length. Any HEAD problem skips the check."""
        try:
            async with session.head(
                url, headers=headers, allow_redirects=True, max_redirects=self.max_redirects,
            ) as resp:
                if not _is_success(resp.status):
                    return
                content_length = resp.content_length
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug("HEAD pre-check skipped for %s: %r", url, e)
            return

        if not content_length or content_length <= 0:
            return

        if content_length > policy.max_file_size:
            raise FileTooLargeError(_too_large_message(content_length, policy))
        if not await self.quota.can_upload(content_length):
            usage = await self.quota.current_usage()
            raise WouldExceedQuotaError(usage.would_exceed_message(), usage=usage)

    async def _download(
        self, session: aiohttp.ClientSession, url: str, headers: dict, policy: QuotaPolicy
    ) -> tuple[bytes, Optional[str]]:
        """GET the body, following a bounded number of redirects.

        Stops reading as soon as the body exceeds the per-file limit.
        """
        try:
            async with session.get(
                url, headers=headers, allow_redirects=True, max_redirects=self.max_redirects,
            ) as resp:
                if 300 <= resp.status < 400:
                    raise RemoteFetchError(
                        "unfollowed redirect", url, status=resp.status, location=resp.headers.get("Location"),
                    )
                if not _is_success(resp.status):
                    raise RemoteFetchError(resp.reason or "request failed", url, status=resp.status)

                chunks = []
                received = 0
                async for chunk in resp.content.iter_chunked(_CHUNK_SIZE):
                    received += len(chunk)
                    if received > policy.max_file_size:
                        raise FileTooLargeError(_too_large_message(received, policy))
                    chunks.append(chunk)

                content_type = resp.headers.get("Content-Type")
                if content_type:
                    content_type = content_type.split(";", 1)[0].strip() or None
                return b"".join(chunks), content_type
        except aiohttp.TooManyRedirects as e:
            last = e.history[-1] if e.history else None
            raise RemoteFetchError(
                "too many redirects",
                url,
                status=last.status if last is not None else e.status,
                location=last.headers.get("Location") if last is not None else None,
            ) from e
        except asyncio.TimeoutError as e:
            raise RemoteFetchError("request timed out", url) from e
        except aiohttp.ClientError as e:
            raise RemoteFetchError(str(e) or type(e).__name__, url) from e
