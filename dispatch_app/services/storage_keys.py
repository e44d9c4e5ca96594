import re
import time


_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")
_TIMESTAMP_PREFIX = re.compile(r"^\d+_")


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def sanitize_filename(filename: str) -> str:
    cleaned = _UNSAFE_FILENAME_CHARS.sub("_", (filename or "").strip())
    return cleaned or "document.pdf"


def strip_timestamp_prefix(filename: str) -> str:
    return _TIMESTAMP_PREFIX.sub("", filename or "")


def timestamped_filename(filename: str, timestamp_ms: int | None = None) -> str:
    stamp = timestamp_ms if timestamp_ms is not None else _timestamp_ms()
    return f"{stamp}_{filename}"


def load_document_prefix(load_id: int) -> str:
    return f"load_{load_id}/"


def load_document_key(load_id: int, filename: str, timestamp_ms: int | None = None) -> str:
    return f"{load_document_prefix(load_id)}{timestamped_filename(sanitize_filename(filename), timestamp_ms)}"


def temp_upload_prefix() -> str:
    return "tmp/uploads/"


def temp_upload_key(filename: str, timestamp_ms: int | None = None) -> str:
    return f"{temp_upload_prefix()}{timestamped_filename(sanitize_filename(filename), timestamp_ms)}"


def filename_from_key(key: str) -> str:
    return strip_timestamp_prefix((key or "").rsplit("/", 1)[-1])
