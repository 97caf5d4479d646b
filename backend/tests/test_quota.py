# ruff: noqa: S101
from __future__ import annotations

import pytest

from conftest import make_quota, seed_usage
from quota_uploads.services.errors import UnknownQuotaTierError
from quota_uploads.services.quota import GB, KB, MB, POLICIES, QuotaPolicy, UsageSnapshot, human_size, resolve_policy


@pytest.mark.parametrize(
    ("num_bytes", "expected"),
    [
        (0, "0 Bytes"),
        (1, "1 Byte"),
        (1000, "1000 Bytes"),
        (1024, "1 KB"),
        (1500, "1.46 KB"),
        (1536 * KB, "1.5 MB"),
        (50 * MB, "50 MB"),
        (300 * GB, "300 GB"),
    ],
)
def test_human_size(num_bytes: int, expected: str) -> None:
    assert human_size(num_bytes) == expected


def test_resolve_policy_for_every_configured_tier() -> None:
    for tier, policy in POLICIES.items():
        assert resolve_policy(tier) is policy
        assert policy.max_file_size <= policy.max_total_storage


def test_resolve_policy_rejects_unknown_tier() -> None:
    with pytest.raises(UnknownQuotaTierError) as exc_info:
        resolve_policy("platinum")
    assert exc_info.value.tier == "platinum"


def test_policy_limits_must_be_positive() -> None:
    with pytest.raises(ValueError):
        QuotaPolicy(tier="broken", max_file_size=0, max_total_storage=100)


def test_policy_is_immutable() -> None:
    policy = QuotaPolicy(tier="t", max_file_size=1, max_total_storage=2)
    with pytest.raises(AttributeError):
        policy.max_file_size = 5  # type: ignore[misc]


def test_usage_snapshot_derived_fields() -> None:
    usage = UsageSnapshot(storage_used=250, storage_limit=1000, tier="basic")
    assert usage.percentage_used == 25.0
    assert usage.remaining == 750
    assert usage.as_dict() == {
        "storage_used": 250,
        "storage_limit": 1000,
        "quota_tier": "basic",
        "percentage_used": 25.0,
    }
    assert UsageSnapshot(storage_used=1200, storage_limit=1000, tier="basic").remaining == 0


@pytest.mark.asyncio
async def test_current_usage_reads_fresh_total(user, uploads) -> None:
    quota = make_quota(user, uploads, max_total_storage=1000)
    assert (await quota.current_usage()).storage_used == 0

    await seed_usage(uploads, user, 400)

    usage = await quota.current_usage()
    assert usage.storage_used == 400
    assert usage.storage_limit == 1000
    assert usage.tier == "test"
    assert usage.percentage_used == 40.0


@pytest.mark.asyncio
async def test_can_upload_allows_exactly_filling_the_quota(user, uploads) -> None:
    quota = make_quota(user, uploads, max_total_storage=1000)
    await seed_usage(uploads, user, 600)

    assert await quota.can_upload(400) is True
    assert await quota.can_upload(401) is False
