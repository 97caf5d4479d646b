"""Upload identity helpers: time-ordered ids, storage keys and filename hygiene."""
import time
import uuid
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

FALLBACK_FILENAME = "unnamed"
URL_FALLBACK_FILENAME = "download"

# Right-to-left override, path separators and shell/URL-hostile characters
_UNSAFE_CHARS = "\u202e%$|:;/<>?*\"\t\r\n\\"
_SANITIZE_TABLE = str.maketrans({ch: "-" for ch in _UNSAFE_CHARS})


def generate_upload_id() -> uuid.UUID:
    """Generate a UUIDv7: 48-bit millisecond timestamp followed by random bits.

    Ids sort by creation time, which keeps the primary key index append-mostly
    and makes storage keys (which are prefixed with the id) roughly ordered.
    """
    timestamp_ms = int(time.time() * 1000)
    uuid_bytes = timestamp_ms.to_bytes(6, byteorder="big") + uuid.uuid4().bytes[6:]

    # version 7 in the high nibble of byte 6, RFC 4122 variant in byte 8
    uuid_bytes = uuid_bytes[:6] + bytes([(uuid_bytes[6] & 0x0F) | 0x70]) + uuid_bytes[7:]
    uuid_bytes = uuid_bytes[:8] + bytes([(uuid_bytes[8] & 0x3F) | 0x80]) + uuid_bytes[9:]
    return uuid.UUID(bytes=uuid_bytes)


def sanitize(filename: str) -> str:
    """Make a filename safe to use as a storage-key component.

    Idempotent: sanitize(sanitize(x)) == sanitize(x).
    """
    cleaned = (filename or "").strip().translate(_SANITIZE_TABLE)
    if cleaned in ("", ".", ".."):
        return FALLBACK_FILENAME
    return cleaned


def storage_key(upload_id: uuid.UUID, filename: str) -> str:
    return f"{upload_id}/{sanitize(filename)}"


def preserve_extension(new_filename: str, original_filename: str) -> str:
    """Append the original extension when the new name has none."""
    new_suffix = PurePosixPath(new_filename).suffix
    original_suffix = PurePosixPath(original_filename).suffix
    if not new_suffix and original_suffix:
        return f"{new_filename}{original_suffix}"
    return new_filename


def renamed_filename(new_filename: str, original_filename: str) -> str:
    return sanitize(preserve_extension(new_filename.strip(), original_filename))


def extract_filename_from_url(url: str) -> str:
    path = unquote(urlparse(url).path or "")
    name = PurePosixPath(path).name
    return name or URL_FALLBACK_FILENAME
