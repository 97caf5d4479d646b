# ruff: noqa: S101
from __future__ import annotations

import uuid

import pytest

from conftest import seed_usage, stored_files
from quota_uploads.models import Provenance, User
from quota_uploads.services.content_store import sniff_content_type


@pytest.mark.asyncio
async def test_destroy_purges_blob_and_decreases_usage(user, uploads, content_store) -> None:
    upload = await seed_usage(uploads, user, 120)
    assert await content_store.exists(upload.blob_key)

    await uploads.destroy(upload)

    assert await uploads.sum_storage_bytes(user.id) == 0
    assert await uploads.get_for_user(user.id, upload.id) is None
    assert stored_files(content_store) == []


@pytest.mark.asyncio
async def test_destroy_with_missing_blob_does_not_raise_and_counts_once(user, uploads, content_store) -> None:
    keep = await seed_usage(uploads, user, 300, "keep.bin")
    gone = await seed_usage(uploads, user, 120, "gone.bin")
    assert await content_store.delete(gone.blob_key) is True

    await uploads.destroy(gone)

    assert await uploads.sum_storage_bytes(user.id) == 300
    assert await uploads.get_for_user(user.id, keep.id) is not None
    assert await content_store.delete(gone.blob_key) is False


@pytest.mark.asyncio
async def test_rename_keeps_extension_and_blob_key(user, uploads) -> None:
    upload = await uploads.ingest(
        user_id=user.id,
        data=b"%PDF-1.4 fake",
        filename="report.pdf",
        declared_content_type="application/pdf",
        provenance=Provenance.API,
    )
    blob_key = upload.blob_key

    renamed = await uploads.rename(upload, "Q3 summary")

    assert renamed.filename == "Q3 summary.pdf"
    assert renamed.blob_key == blob_key
    reloaded = await uploads.get_for_user(user.id, upload.id)
    assert reloaded.filename == "Q3 summary.pdf"


@pytest.mark.asyncio
async def test_list_for_user_filters_by_filename_and_owner(user, uploads, db) -> None:
    other = User(email="someone@example.com", quota_tier="test")
    db.add(other)
    await db.commit()

    await seed_usage(uploads, user, 10, "holiday-photo.png")
    await seed_usage(uploads, user, 10, "invoice.pdf")
    await seed_usage(uploads, other, 10, "holiday-video.mp4")

    mine = await uploads.list_for_user(user.id)
    assert {u.filename for u in mine} == {"holiday-photo.png", "invoice.pdf"}

    matches = await uploads.list_for_user(user.id, query="holiday")
    assert [u.filename for u in matches] == ["holiday-photo.png"]

    assert await uploads.list_for_user(user.id, page=2, per_page=1) != []
    assert await uploads.list_for_user(user.id, page=3, per_page=1) == []


@pytest.mark.asyncio
async def test_ingest_records_store_metadata_not_caller_metadata(user, uploads) -> None:
    upload = await uploads.ingest(
        user_id=user.id,
        data=b"GIF89a" + b"\x00" * 20,
        filename="not-really.txt",
        declared_content_type="text/plain",
        provenance=Provenance.SLACK,
        original_url="https://files.example.com/x",
    )

    assert upload.content_type == "image/gif"
    assert upload.byte_size == 26
    assert upload.provenance is Provenance.SLACK
    assert upload.original_url == "https://files.example.com/x"
    assert upload.checksum is not None
    assert upload.blob_key.startswith(f"{upload.id}/")
    assert upload.url == f"https://cdn.example.com/{upload.id}/not-really.txt"


def test_sniff_content_type_fallback_order() -> None:
    assert sniff_content_type(b"\x89PNG\r\n\x1a\n\x00\x00", "a.bin", "text/plain") == "image/png"
    assert sniff_content_type(b"plain words", "notes.txt", None) == "text/plain"
    assert sniff_content_type(b"plain words", "blob", "application/json") == "application/json"
    assert sniff_content_type(b"plain words", "blob", None) == "application/octet-stream"


def test_content_store_rejects_keys_outside_its_root(content_store) -> None:
    with pytest.raises(ValueError):
        content_store.path_for("../outside.bin")


@pytest.mark.asyncio
async def test_destroy_many_is_owner_scoped_and_tolerates_missing_blobs(user, uploads, db, content_store) -> None:
    other = User(email="someone@example.com", quota_tier="test")
    db.add(other)
    await db.commit()

    first = await seed_usage(uploads, user, 100, "first.bin")
    second = await seed_usage(uploads, user, 200, "second.bin")
    kept = await seed_usage(uploads, user, 300, "kept.bin")
    foreign = await seed_usage(uploads, other, 50, "foreign.bin")
    await content_store.delete(second.blob_key)
    unknown = uuid.uuid4()

    deleted, not_found = await uploads.destroy_many(user.id, [first.id, second.id, foreign.id, unknown, first.id])

    assert deleted == [first.id, second.id]
    assert not_found == [foreign.id, unknown]
    assert await uploads.sum_storage_bytes(user.id) == 300
    assert await uploads.get_for_user(other.id, foreign.id) is not None
    assert not await content_store.exists(first.blob_key)
    assert await content_store.exists(kept.blob_key)
    assert await content_store.exists(foreign.blob_key)


@pytest.mark.asyncio
async def test_destroy_many_with_no_ids_does_nothing(user, uploads) -> None:
    await seed_usage(uploads, user, 100)

    assert await uploads.destroy_many(user.id, []) == ([], [])
    assert await uploads.sum_storage_bytes(user.id) == 100
