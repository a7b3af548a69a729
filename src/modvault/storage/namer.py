from __future__ import annotations

import re
import secrets
import time

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_MAX_CLEAN_LENGTH = 128
_FALLBACK_NAME = "file"


def clean_filename(original_name: str) -> str:
    """Reduce an untrusted client filename to a safe flat path segment."""
    basename = re.split(r"[\\/]", original_name)[-1]
    cleaned = _UNSAFE_CHARS.sub("_", basename.strip())
    if not cleaned.strip("."):
        return _FALLBACK_NAME
    if len(cleaned) <= _MAX_CLEAN_LENGTH:
        return cleaned

    stem, dot, suffix = cleaned.rpartition(".")
    if not dot or not stem or len(suffix) >= _MAX_CLEAN_LENGTH // 2:
        return cleaned[:_MAX_CLEAN_LENGTH]
    keep = _MAX_CLEAN_LENGTH - len(suffix) - 1
    return f"{stem[:keep]}.{suffix}"


def make_storage_name(original_name: str, *, stamp: int, token: str) -> str:
    if stamp < 0:
        raise ValueError("stamp must be >= 0")
    if not re.fullmatch(r"[0-9a-f]+", token):
        raise ValueError("token must be a non-empty lowercase hex string")
    return f"{stamp}-{token}-{clean_filename(original_name)}"


def new_storage_name(original_name: str) -> str:
    return make_storage_name(
        original_name,
        stamp=time.time_ns(),
        token=secrets.token_hex(4),
    )


def extension_of(name: str) -> str:
    basename = re.split(r"[\\/]", name)[-1]
    stem, dot, suffix = basename.rpartition(".")
    if not dot or not stem.strip(".") or not suffix:
        return ""
    return f".{suffix.lower()}"
