"""Shared httpx client, response mapping and the direct (credential-less) fetch."""

from __future__ import annotations

import random

import httpx

from scrape_proxy.core.errors import OutboundFailure
from scrape_proxy.core.models import PoolConfig, UpstreamBody

USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
]

ACCEPT_LANGUAGES = ["en-US,en;q=0.9", "en-GB,en;q=0.9"]

# InvalidURL is raised while building the request and is not an HTTPError.
CLIENT_ERRORS = (httpx.HTTPError, httpx.InvalidURL)


def build_headers() -> dict[str, str]:
    """Build randomized headers."""
    return {
        "User-Agent": random.choice(USER_AGENTS),
        "Accept-Language": random.choice(ACCEPT_LANGUAGES),
    }


def make_http_client(config: PoolConfig) -> httpx.AsyncClient:
    """Create the httpx AsyncClient shared by every outbound collaborator."""
    timeout = httpx.Timeout(config.httpx_timeout_seconds)
    # Every credential slot plus direct and fallback calls may be in flight.
    slots = max(1, len(config.credentials)) * config.max_concurrency
    limits = httpx.Limits(max_connections=slots * 2 + 20)
    return httpx.AsyncClient(
        http2=True,
        follow_redirects=True,
        timeout=timeout,
        limits=limits,
    )


def failure_from_exception(exc: httpx.HTTPError | httpx.InvalidURL, url: str) -> OutboundFailure:
    """Map a client-level httpx error (no response) to OutboundFailure."""
    kind = "Timeout" if isinstance(exc, httpx.TimeoutException) else type(exc).__name__
    return OutboundFailure(kind, url, str(exc)[:200])


def body_from_response(resp: httpx.Response, url: str) -> UpstreamBody:
    """
    Turn a response into an UpstreamBody or raise OutboundFailure.

    Any 2xx/3xx status counts as success. Error statuses keep the
    upstream code so it can be mirrored back to the caller.
    """
    if not 200 <= resp.status_code < 400:
        raise OutboundFailure(
            "HTTPStatusError",
            url,
            resp.text[:200],
            status_code=resp.status_code,
        )

    return UpstreamBody(body=resp.content, content_type=resp.headers.get("Content-Type"))


async def fetch_direct(client: httpx.AsyncClient, url: str) -> UpstreamBody:
    """
    GET the target URL without any credential.

    Raises:
        OutboundFailure: Transport error or non-success status
    """
    try:
        resp = await client.get(url, headers=build_headers())
    except CLIENT_ERRORS as exc:
        raise failure_from_exception(exc, url) from exc

    return body_from_response(resp, url)
