"""Deterministic cache keys and TTL policy."""

from __future__ import annotations

import hashlib
import json
import re
from datetime import timedelta
from typing import Any


_WHITESPACE = re.compile(r"\s+")

DEFAULT_KEY_VERSION = "v1"


class TTLPolicy:
    """Expiry per kind of cached output.

    Volatile generated content is cached briefly for cost amortization;
    deterministic translations can be kept for a year.
    """

    VOLATILE = timedelta(hours=1)
    GENERATED = timedelta(days=7)
    TRANSLATION = timedelta(days=365)


def normalize_text(text: str, case_insensitive: bool = False) -> str:
    """Collapse whitespace runs and trim."""
    text = _WHITESPACE.sub(" ", text).strip()
    return text.lower() if case_insensitive else text


def normalize_payload(payload: Any, case_insensitive: bool = False) -> Any:
    """Normalize a payload according to its shape.

    Plain text is whitespace-collapsed, sequences are normalized element by
    element with order kept, and mappings are normalized value by value.
    Other JSON scalars pass through unchanged.
    """
    if isinstance(payload, str):
        return normalize_text(payload, case_insensitive)
    if isinstance(payload, (list, tuple)):
        return [normalize_payload(item, case_insensitive) for item in payload]
    if isinstance(payload, dict):
        return {
            str(key): normalize_payload(value, case_insensitive)
            for key, value in payload.items()
        }
    return payload


def canonical_json(value: Any) -> str:
    """Serialize a value to canonical JSON."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def make_cache_key(
    scope: str,
    payload: Any,
    params: dict[str, Any] | None = None,
    version: str = DEFAULT_KEY_VERSION,
    case_insensitive: bool = False,
) -> str:
    """Build a deterministic cache key.

    Every parameter that changes the expected output (language pair, output
    format, item count) must be passed in ``params`` so that requests
    differing only in it never share a key. ``None``-valued params are
    ignored.

    Args:
        scope: Pipeline or endpoint producing the cached value
        payload: Request input (text, list of segments or mapping)
        params: Output-affecting parameters
        version: Key version, bumped when the cached format changes
        case_insensitive: Lower-case text before hashing

    Returns:
        Cache key of the form ``{scope}:{version}:{sha256}``
    """
    params = {k: v for k, v in (params or {}).items() if v is not None}

    material = canonical_json({
        "scope": scope,
        "version": version,
        "input": normalize_payload(payload, case_insensitive),
        "params": params,
    })
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()

    return f"{scope}:{version}:{digest}"
