"""Validation and naming helpers for attachment uploads."""

import math
import re
from pathlib import PurePosixPath
from urllib.parse import quote
from uuid import UUID

from casebook.core.modules.attachment.models import UploadPart
from casebook.errors import ValidationError

STORAGE_PREFIX = "attachments"
MAX_FILENAME_LENGTH = 100
MAX_PART_COUNT = 10_000  # S3 multipart limit


def build_storage_key(project_id: UUID, object_id: UUID, filename: str) -> str:
    """Object key for an uploaded file: attachments/<project>/<object>__<filename>.

    The object id keeps keys unique when the same filename is uploaded twice.
    """
    return f"{STORAGE_PREFIX}/{project_id}/{object_id}__{sanitize_filename(filename)}"


def sanitize_filename(filename: str) -> str:
    """Make a user supplied filename safe to embed in an object key.

    Strips directories and leading dots, replaces anything outside word
    characters, spaces, dots and hyphens, and caps the length while keeping the
    extension.
    """
    filename = PurePosixPath(filename.replace("\\", "/")).name
    filename = filename.lstrip(".")

    sanitized = re.sub(r"[^\w\s.-]", "_", filename)
    sanitized = re.sub(r"_+", "_", sanitized)
    sanitized = re.sub(r"\s+", " ", sanitized)

    if len(sanitized) > MAX_FILENAME_LENGTH:
        name, dot, ext = sanitized.rpartition(".")
        if dot:
            max_name_len = MAX_FILENAME_LENGTH - 4 - len(ext)
            sanitized = f"{name[:max_name_len]}.{ext}" if max_name_len > 0 else f"file.{ext}"
        else:
            sanitized = sanitized[:MAX_FILENAME_LENGTH]

    # Nothing meaningful left (only separators)
    if not re.sub(r"[\s._-]", "", sanitized):
        sanitized = "unnamed_file"

    return sanitized


def content_disposition(filename: str) -> str:
    """Content-Disposition header that downloads a file under the given name.

    The quoted filename is an ASCII fallback without quotes, backslashes or
    control characters. The exact name travels percent-encoded in filename* (RFC 6266).
    """
    fallback = re.sub(r'[^\x20-\x7e]|["\\]', "_", filename) or "download"
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def count_parts(file_size: int, chunk_size: int) -> int:
    """Number of chunks a file of the given size is split into."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    return max(1, math.ceil(file_size / chunk_size))


def validate_upload(filename: str, file_size: int, mime_type: str, max_size: int, allowed_mime_types: list[str]) -> None:
    """Check an upload request against size and type limits.

    Raises:
        ValidationError: If the name is empty, the size is out of range or the type is not allowed
    """
    if not filename.strip():
        raise ValidationError("File name is required")
    if file_size <= 0:
        raise ValidationError("File is empty")
    if file_size > max_size:
        raise ValidationError(f"File size {file_size} exceeds maximum allowed size of {max_size} bytes")
    if mime_type not in allowed_mime_types:
        raise ValidationError(f"File type '{mime_type}' is not allowed")


def validate_parts(parts: list[UploadPart], part_count: int) -> None:
    """Check that parts are exactly 1..part_count, each once, in ascending order.

    Raises:
        ValidationError: Naming the missing, duplicated or unexpected part numbers
    """
    numbers = [part.part_number for part in parts]
    expected = set(range(1, part_count + 1))

    unknown = sorted(set(numbers) - expected)
    if unknown:
        raise ValidationError(f"Unexpected upload part(s): {', '.join(map(str, unknown))} (upload has {part_count} parts)")

    missing = sorted(expected - set(numbers))
    if missing:
        raise ValidationError(f"Missing upload part(s): {', '.join(map(str, missing))} of {part_count}")

    duplicates = sorted({n for n in numbers if numbers.count(n) > 1})
    if duplicates:
        raise ValidationError(f"Duplicate upload part(s): {', '.join(map(str, duplicates))}")

    if numbers != sorted(numbers):
        raise ValidationError("Upload parts must be listed in ascending part number order")
