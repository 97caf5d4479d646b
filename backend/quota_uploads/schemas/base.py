"""camelCase base models for upload and quota payloads.

Services and ORM models stay snake_case (``byte_size``, ``storage_used``).
JSON on the wire is camelCase (``contentType``, ``storageUsed``).
"""
from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Request bodies and plain responses (batch results, quota usage, errors)."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "protected_namespaces": (),
    }


class CamelORMModel(BaseModel):
    """Responses built from Upload rows."""
    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "from_attributes": True,
        "protected_namespaces": (),
    }
