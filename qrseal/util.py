"""
Utility functions for QRSeal.

Hashing, base64url encoding and time helpers.
"""

import base64
import hashlib
import time
from datetime import datetime, timezone
from typing import Union


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def now_epoch() -> int:
    """Get current Unix timestamp as integer."""
    return int(time.time())


def b64url_encode(b: bytes) -> str:
    """URL-safe base64 encode bytes to string (no padding)."""
    return base64.urlsafe_b64encode(b).rstrip(b'=').decode('ascii')


def b64url_decode(s: str) -> bytes:
    """
    URL-safe base64 decode string to bytes (handles missing padding).

    Raises:
        ValueError: On characters outside the URL-safe alphabet
    """
    if not isinstance(s, str):
        raise ValueError("expected str")
    padding = 4 - (len(s) % 4)
    if padding != 4:
        s += '=' * padding
    raw = s.encode('ascii')
    # urlsafe_b64decode silently drops invalid characters
    return base64.b64decode(raw, altchars=b'-_', validate=True)


def utc_rfc3339(ts_epoch: float) -> str:
    """Convert Unix timestamp to RFC3339 UTC string."""
    return datetime.fromtimestamp(ts_epoch, tz=timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')
