# ruff: noqa: S101
from __future__ import annotations

from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from quota_uploads.models import Base, Provenance, User
from quota_uploads.services.content_store import LocalContentStore
from quota_uploads.services.quota import QuotaPolicy, QuotaService
from quota_uploads.services.upload_repository import UploadRepository


@pytest_asyncio.fixture
async def session_maker(tmp_path: Path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'uploads.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def content_store(tmp_path: Path) -> LocalContentStore:
    return LocalContentStore(tmp_path / "blobs")


@pytest.fixture
def uploads(db: AsyncSession, content_store: LocalContentStore) -> UploadRepository:
    return UploadRepository(db, content_store)


@pytest_asyncio.fixture
async def user(db: AsyncSession) -> User:
    row = User(email="orpheus@example.com", name="Orpheus", quota_tier="test")
    db.add(row)
    await db.commit()
    return row


def make_quota(user: User, uploads: UploadRepository, *, max_file_size: int = 1000, max_total_storage: int = 1000) -> QuotaService:
    policy = QuotaPolicy(tier="test", max_file_size=max_file_size, max_total_storage=max_total_storage)
    return QuotaService(user, uploads, policies={"test": policy})


async def seed_usage(uploads: UploadRepository, user: User, num_bytes: int, filename: str = "seed.bin"):
    """Store an existing upload of num_bytes for the user."""
    return await uploads.ingest(
        user_id=user.id,
        data=b"\x00" * num_bytes,
        filename=filename,
        declared_content_type=None,
        provenance=Provenance.WEB,
    )


def stored_files(content_store: LocalContentStore) -> list[Path]:
    return sorted(p for p in content_store.base_path.rglob("*") if p.is_file())
