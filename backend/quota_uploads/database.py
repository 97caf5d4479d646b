"""Async SQLAlchemy engine and the per-request session.

One session serves a whole request, including every commit a batch makes.
Sessions use ``expire_on_commit=False`` so accepted uploads stay readable
after each per-item commit; ``UploadRepository`` reloads instances itself
when a commit has to be rolled back.
"""
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from quota_uploads.config import settings

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
