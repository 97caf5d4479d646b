"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
import uvicorn

from quota_uploads.config import settings
from quota_uploads.database import engine, get_db
from quota_uploads.models import Base
from quota_uploads.schemas.upload import QuotaErrorResponse, QuotaUsage
from quota_uploads.services.errors import (
    IngestionError,
    QuotaError,
    RemoteFetchError,
    UnknownQuotaTierError,
    UploadValidationError,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    await engine.dispose()


app = FastAPI(
    title="Quota Uploads API",
    version="1.0.0",
    description="Quota-enforcing file ingestion backed by a content store.",
    lifespan=lifespan,
)

# CORS
origins = [o.strip() for o in settings.CORS_ORIGINS.split(",")]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(UploadValidationError)
async def validation_error_handler(request: Request, exc: UploadValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(QuotaError)
async def quota_error_handler(request: Request, exc: QuotaError):
    """402 with the usage block so clients can show how much room is left."""
    quota = QuotaUsage(**exc.usage.as_dict()) if exc.usage is not None else None
    body = QuotaErrorResponse(error=str(exc), quota=quota)
    return JSONResponse(status_code=402, content=body.model_dump(by_alias=True))


@app.exception_handler(RemoteFetchError)
async def remote_fetch_error_handler(request: Request, exc: RemoteFetchError):
    logger.warning("Remote fetch failed for %s: %s", exc.url, exc)
    return JSONResponse(status_code=422, content={"detail": f"Upload failed: {exc}"})


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError):
    return JSONResponse(status_code=422, content={"detail": f"Upload failed: {exc}"})


@app.exception_handler(UnknownQuotaTierError)
async def unknown_tier_handler(request: Request, exc: UnknownQuotaTierError):
    logger.error("Quota misconfiguration: %s", exc)
    return JSONResponse(status_code=500, content={"detail": "Storage quota is not configured for this account"})


@app.get("/api/health")
async def health_check():
    """Verify API and database connectivity."""
    try:
        async for db in get_db():
            await db.execute(text("SELECT 1"))
            return {"status": "ok", "database": "connected"}
    except Exception as e:
        return {"status": "error", "database": str(e)}


# Register routers
from quota_uploads.routes.uploads import router as uploads_router
from quota_uploads.routes.api import router as api_router
app.include_router(uploads_router)
app.include_router(api_router)


def serve() -> None:
    uvicorn.run("quota_uploads.main:app", host="0.0.0.0", port=settings.API_PORT)
