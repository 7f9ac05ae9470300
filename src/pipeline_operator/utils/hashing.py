from __future__ import annotations

import hashlib
import json
from typing import Any

# Consonants and digits only, so encoded hashes never spell words.
_SAFE_ALPHANUMS = "bcdfghjklmnpqrstvwxz2456789"


def _canonical_json(obj: Any) -> str:
    """Serialize ``obj`` so that equal content always yields the same text."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def safe_encode_string(s: str) -> str:
    """Map every character of ``s`` onto the safe alphabet."""
    return "".join(_SAFE_ALPHANUMS[ord(ch) % len(_SAFE_ALPHANUMS)] for ch in s)


def compute_hash(obj: Any) -> str:
    """Return a short, deterministic, key-order independent hash of ``obj``.

    Nested mappings are hashed with sorted keys, so two specs with the same
    content hash identically regardless of how their fields were declared.
    """
    digest = hashlib.sha256(_canonical_json(obj).encode("utf-8")).digest()
    value = int.from_bytes(digest[:4], "big")
    return safe_encode_string(str(value))
