"""Storage quota policies and usage snapshots.

A policy is resolved per user per request from the user's tier and is never
stored. Usage is always a fresh SUM over the user's uploads. Once ingestion
starts the snapshot is stale, so it is only ever used as an admission hint.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from quota_uploads.services.errors import UnknownQuotaTierError

if TYPE_CHECKING:
    from quota_uploads.models.user import User
    from quota_uploads.services.upload_repository import UploadRepository

KB = 1024
MB = 1024 * KB
GB = 1024 * MB

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]


def human_size(num_bytes: int) -> str:
    """Format a byte count using 1024-based units and three significant digits."""
    if num_bytes < KB:
        return "1 Byte" if num_bytes == 1 else f"{num_bytes} Bytes"

    value = float(num_bytes)
    unit = 0
    while value >= KB and unit < len(_SIZE_UNITS) - 1:
        value /= KB
        unit += 1

    decimals = max(3 - len(str(int(value))), 0)
    text = f"{round(value, decimals):.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[unit]}"


@dataclass(frozen=True)
class QuotaPolicy:
    tier: str
    max_file_size: int
    max_total_storage: int

    def __post_init__(self):
        if self.max_file_size <= 0 or self.max_total_storage <= 0:
            raise ValueError(f"Quota limits for tier {self.tier!r} must be positive")


@dataclass(frozen=True)
class UsageSnapshot:
    storage_used: int
    storage_limit: int
    tier: str

    @property
    def percentage_used(self) -> float:
        return round(self.storage_used / self.storage_limit * 100, 1)

    @property
    def remaining(self) -> int:
        return max(self.storage_limit - self.storage_used, 0)

    def would_exceed_message(self) -> str:
        return f"Would exceed storage quota ({human_size(self.remaining)} remaining)"

    def as_dict(self) -> dict:
        return {
            "storage_used": self.storage_used,
            "storage_limit": self.storage_limit,
            "quota_tier": self.tier,
            "percentage_used": self.percentage_used,
        }


POLICIES: dict[str, QuotaPolicy] = {
    "basic": QuotaPolicy(tier="basic", max_file_size=50 * MB, max_total_storage=1 * GB),
    "verified": QuotaPolicy(tier="verified", max_file_size=100 * MB, max_total_storage=50 * GB),
    "unlimited": QuotaPolicy(tier="unlimited", max_file_size=200 * MB, max_total_storage=300 * GB),
}


def resolve_policy(tier: str, policies: dict[str, QuotaPolicy] | None = None) -> QuotaPolicy:
    table = POLICIES if policies is None else policies
    policy = table.get(tier)
    if policy is None:
        raise UnknownQuotaTierError(tier)
    return policy


class QuotaService:
    """Resolves a user's policy and reads their current usage."""

    def __init__(
        self,
        user: "User",
        uploads: "UploadRepository",
        policies: dict[str, QuotaPolicy] | None = None,
    ):
        self.user_id = user.id
        self.tier = user.quota_tier
        self.uploads = uploads
        self._policies = policies

    def resolve_policy(self) -> QuotaPolicy:
        return resolve_policy(self.tier, self._policies)

    async def storage_used(self) -> int:
        """Fresh aggregate read - never a previously loaded total."""
        return await self.uploads.sum_storage_bytes(self.user_id)

    async def current_usage(self) -> UsageSnapshot:
        policy = self.resolve_policy()
        used = await self.storage_used()
        return UsageSnapshot(storage_used=used, storage_limit=policy.max_total_storage, tier=policy.tier)

    async def can_upload(self, additional_bytes: int) -> bool:
        policy = self.resolve_policy()
        used = await self.storage_used()
        return used + additional_bytes <= policy.max_total_storage
