"""API key check for operator endpoints."""
from __future__ import annotations

import hmac
from typing import Optional


def verify_api_key(key: Optional[str], expected: Optional[str]) -> bool:
    """Return True if the provided key matches the configured `API_KEY`.

    A missing configuration rejects every key.
    """
    if not key or not expected:
        return False
    return hmac.compare_digest(key.encode("utf-8"), expected.encode("utf-8"))
