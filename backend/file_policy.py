# file_policy.py — Upload validation and object key derivation for execution files
import os
import re
import secrets
from typing import Optional

from errors import FileTooLarge, InvalidContentType, InvalidFileType

KEY_PREFIX = "task-executions/"
MAX_FILE_SIZE = 100 * 1024 * 1024  # 100 MiB, inclusive

ALLOWED_EXTENSIONS = ("txt", "pdf", "doc", "docx", "xls", "xlsx", "csv", "exl")

ALLOWED_MIME_TYPES = {
    "text/plain",
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel.sheet.macroEnabled.12",
}

GENERIC_MIME_TYPE = "application/octet-stream"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9]")


def client_basename(filename: str) -> str:
    """Strip any directory part a browser may send (both separators)."""
    return re.split(r"[\\/]", filename or "")[-1]


def file_extension(filename: str) -> str:
    return os.path.splitext(client_basename(filename))[1].lstrip(".").lower()


def normalise_mime(content_type: Optional[str]) -> str:
    # "text/plain; charset=utf-8" -> "text/plain"
    return (content_type or "").split(";")[0].strip()


def validate_upload(filename: str, size: int, content_type: Optional[str] = None) -> str:
    """Check an upload against the file policy and return its extension.

    The extension is the primary gate. The MIME type is only enforced when
    it is present and more specific than application/octet-stream.
    """
    if size > MAX_FILE_SIZE:
        raise FileTooLarge("File too large. Max 100MB allowed.")

    ext = file_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        allowed = ", ".join(f".{e}" for e in ALLOWED_EXTENSIONS)
        raise InvalidFileType(f"Invalid file type. Allowed: {allowed}")

    mime = normalise_mime(content_type)
    if mime and mime != GENERIC_MIME_TYPE and mime not in ALLOWED_MIME_TYPES:
        raise InvalidContentType("Invalid file content type.")

    return ext


def build_object_key(filename: str) -> str:
    """Derive a collision-resistant, traversal-free key under KEY_PREFIX."""
    base = os.path.splitext(client_basename(filename))[0]
    safe_base = _UNSAFE_CHARS.sub("_", base) or "file"
    token = secrets.token_hex(8)
    ext = file_extension(filename)
    suffix = f".{ext}" if ext else ""
    return f"{KEY_PREFIX}{token}_{safe_base}{suffix}"
