"""User model - upload owners. Authentication lives outside this service."""
import uuid
from sqlalchemy import String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from quota_uploads.config import settings
from quota_uploads.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), default="")
    quota_tier: Mapped[str] = mapped_column(String(30), default=lambda: settings.DEFAULT_QUOTA_TIER)

    # Records are destroyed through UploadRepository so blobs get purged
    uploads = relationship("Upload", back_populates="user", passive_deletes=True)
