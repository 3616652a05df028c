"""Identifier utilities for executions, fingerprints and request hashes."""

from __future__ import annotations

import hashlib
import json
import secrets
from collections.abc import Iterable, Mapping
from typing import Any


def normalize_identifier(value: str | None) -> str:
    """Normalize identifiers to lowercase with collapsed whitespace."""
    if value is None:
        return ""
    return " ".join(value.strip().lower().split())


def hash_content(content: str, *, length: int = 16) -> str:
    """Return a stable hex prefix of the SHA-256 digest of ``content``."""
    digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return digest[:length]


def build_fingerprint(parts: Iterable[str | None]) -> str:
    """Join normalized parts and hash them into a cache fingerprint."""
    return hash_content("|".join(normalize_identifier(part) for part in parts))


def canonical_hash(payload: Mapping[str, Any]) -> str:
    """Return the full SHA-256 of a mapping serialised with sorted keys."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def new_execution_id() -> str:
    return f"exec-{secrets.token_hex(8)}"


__all__ = [
    "build_fingerprint",
    "canonical_hash",
    "hash_content",
    "new_execution_id",
    "normalize_identifier",
]
