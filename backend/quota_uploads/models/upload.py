"""Upload model - file metadata. The bytes live in the content store under blob_key."""
import enum
import uuid
from typing import Optional
from sqlalchemy import BigInteger, Enum, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship
from quota_uploads.config import settings
from quota_uploads.models.base import Base, TimestampMixin


class Provenance(str, enum.Enum):
    """How an upload entered the system."""
    WEB = "web"
    API = "api"
    URL = "url"
    SLACK = "slack"


class Upload(Base, TimestampMixin):
    __tablename__ = "uploads"

    # UUIDv7, generated before the blob write so the storage key is known up front
    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    blob_key: Mapped[str] = mapped_column(String(1000), nullable=False, unique=True)
    filename: Mapped[str] = mapped_column(String(500), nullable=False)
    byte_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    checksum: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provenance: Mapped[Provenance] = mapped_column(
        Enum(
            Provenance,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
            validate_strings=True,
        ),
        nullable=False,
    )
    original_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user = relationship("User", back_populates="uploads")

    __table_args__ = (
        Index("idx_uploads_user_created", "user_id", "created_at"),
    )

    @property
    def url(self) -> str:
        """Public CDN URL. Unsigned."""
        return f"https://{settings.CDN_HOST}/{self.id}/{self.filename}"
