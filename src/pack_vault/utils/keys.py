# src/pack_vault/utils/keys.py
"""Content key normalization for the private pack-content namespace."""

from __future__ import annotations

from pack_vault.services.errors import InvalidRequest

DEFAULT_CONTENT_PREFIX = "pack-content/"


def normalize_content_key(key: str, prefix: str = DEFAULT_CONTENT_PREFIX) -> str:
    """Return ``key`` rooted under ``prefix``, adding the prefix at most once.

    >>> normalize_content_key("x.png")
    'pack-content/x.png'
    >>> normalize_content_key("pack-content/x.png")
    'pack-content/x.png'
    """
    cleaned = (key or "").strip().lstrip("/")
    if not cleaned:
        raise InvalidRequest("invalid_content_key")

    if not prefix.endswith("/"):
        prefix = f"{prefix}/"
    relative = cleaned[len(prefix):] if cleaned.startswith(prefix) else cleaned

    segments = relative.split("/")
    if not relative or any(segment in ("", ".", "..") for segment in segments):
        raise InvalidRequest("invalid_content_key")
    return f"{prefix}{relative}"


def is_owned_upload(key: str, owner_id: str, prefix: str = DEFAULT_CONTENT_PREFIX) -> bool:
    """True when a normalized ``key`` lives under ``<prefix><owner_id>/``."""
    if not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return bool(owner_id) and key.startswith(f"{prefix}{owner_id}/")


def is_pack_object(key: str, vendor_id: str, pack_id: str, prefix: str = DEFAULT_CONTENT_PREFIX) -> bool:
    """True when a normalized ``key`` lives under ``<prefix><vendor_id>/<pack_id>/``."""
    if not prefix.endswith("/"):
        prefix = f"{prefix}/"
    return bool(vendor_id and pack_id) and key.startswith(f"{prefix}{vendor_id}/{pack_id}/")
