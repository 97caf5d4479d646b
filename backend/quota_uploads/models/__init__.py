"""Import all models so SQLAlchemy metadata knows about them."""
from quota_uploads.models.base import Base
from quota_uploads.models.user import User
from quota_uploads.models.upload import Provenance, Upload

__all__ = ["Base", "User", "Upload", "Provenance"]
