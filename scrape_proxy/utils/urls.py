"""URL validation and log-safe rendering using yarl."""

from __future__ import annotations

from typing import Optional

import httpx
from yarl import URL


def parse_target_url(raw: Optional[str]) -> Optional[str]:
    """
    Validate an inbound target URL.

    Returns the URL unchanged when it is an absolute http(s) URL with a
    host that the outbound client can also send, None otherwise.
    """
    if not raw:
        return None

    try:
        url = URL(raw)
    except (TypeError, ValueError):
        return None

    if url.scheme not in ("http", "https") or not url.host:
        return None

    # yarl accepts some URLs httpx refuses (control characters, for one).
    try:
        httpx.URL(raw)
    except httpx.InvalidURL:
        return None

    return raw


def safe_url(raw: str, limit: int = 80) -> str:
    """Strip query and fragment (they may carry secrets) and truncate."""
    try:
        url = URL(raw)
    except (TypeError, ValueError):
        return raw[:limit]

    return str(url.with_query(None).with_fragment(None))[:limit]
