"""
HTTP surface of the scrape proxy (FastAPI).

Routes:
- GET /fetch?url=<target>: fetch through the credential pool
- GET /healthz: liveness
- GET /readyz: ready once the ledger is loaded
- GET /stats: pool summary, dispatch counters and queue depth
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from scrape_proxy.config.env import load_pool_config
from scrape_proxy.core.errors import DispatchFailed
from scrape_proxy.core.models import PoolConfig
from scrape_proxy.core.store import CredentialStore
from scrape_proxy.pipelines.dispatcher import Dispatcher
from scrape_proxy.pipelines.service import build_context, close_context
from scrape_proxy.utils.logging import get_logger
from scrape_proxy.utils.metrics import compute_pool_summary
from scrape_proxy.utils.urls import parse_target_url, safe_url

logger = get_logger(__name__)

DEFAULT_CONTENT_TYPE = "text/html; charset=utf-8"




# ==== APP FACTORY ==== #

def create_app(
    config: Optional[PoolConfig] = None,
    *,
    store: Optional[CredentialStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    start_maintenance: bool = True,
) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        config: Pool configuration (defaults to load_pool_config())
        store: Store override, mainly for tests
        http_client: Outbound client override, mainly for tests
        start_maintenance: Run periodic maintenance loops

    Returns:
        FastAPI app whose lifespan builds and tears down the proxy
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        ctx = await build_context(
            config or load_pool_config(),
            store=store,
            http_client=http_client,
            start_maintenance=start_maintenance,
        )
        app.state.ctx = ctx
        app.state.dispatcher = ctx.dispatcher
        logger.info("Scrape proxy ready")
        try:
            yield
        finally:
            await close_context(ctx)

    app = FastAPI(title="scrape-proxy", lifespan=lifespan)
    app.add_api_route("/fetch", fetch, methods=["GET"])
    app.add_api_route("/healthz", healthz, methods=["GET"])
    app.add_api_route("/readyz", readyz, methods=["GET"])
    app.add_api_route("/stats", stats, methods=["GET"])
    return app




# ==== ROUTES ==== #

def _error(status_code: int, error: str, details: Optional[str]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


async def fetch(request: Request, url: Optional[str] = None) -> Response:
    """Fetch url through direct GET, the credential pool or the fallback backend."""
    if not url:
        return _error(400, "URL is required", "missing query parameter 'url'")

    target = parse_target_url(url)
    if target is None:
        return _error(400, "Invalid URL", "expected an absolute http(s) URL")

    dispatcher: Dispatcher = request.app.state.dispatcher

    try:
        outcome = await dispatcher.dispatch(target)
    except DispatchFailed as exc:
        logger.warning(
            "Fetch failed for %s: %s (status=%s)",
            safe_url(target),
            exc.kind,
            exc.status_code,
        )
        return _error(exc.status_code, exc.kind, exc.detail)

    # Upstream bytes and Content-Type go out as-is; the charset stays the upstream one.
    headers = {
        "Content-Type": outcome["content_type"] or DEFAULT_CONTENT_TYPE,
        "X-Fetch-Source": outcome["source"],
    }
    if outcome["step"]:
        headers["X-Fetch-Step"] = outcome["step"]

    return Response(content=outcome["body"], headers=headers)


async def healthz() -> dict[str, str]:
    return {"status": "ok"}


async def readyz(request: Request) -> JSONResponse:
    ctx = getattr(request.app.state, "ctx", None)
    if ctx is None or not ctx.ledger.loaded:
        return JSONResponse(status_code=503, content={"status": "starting"})

    return JSONResponse(content={"status": "ready"})


async def stats(request: Request) -> JSONResponse:
    dispatcher: Dispatcher = request.app.state.dispatcher
    selector = dispatcher.selector
    summary = compute_pool_summary(
        dispatcher.ledger,
        {*selector.premium_ids, *selector.free_ids},
        queue_depth=len(dispatcher.queue),
    )
    return JSONResponse(content={"pool": summary, "dispatch": dict(dispatcher.stats)})
