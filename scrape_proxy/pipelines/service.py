"""
Service assembly: wire the pool, backends and maintenance together.

This module orchestrates startup and shutdown of a running proxy:
- Builds the durable store, ledger and shared HTTP client
- Loads and reconciles the ledger (fatal on store read errors)
- Builds the selector, pending queue and dispatcher
- Starts and stops periodic maintenance
"""

from __future__ import annotations

from typing import Optional

import httpx

from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import PoolConfig, ProxyContext
from scrape_proxy.core.selector import CredentialSelector
from scrape_proxy.core.store import CredentialStore, make_store
from scrape_proxy.pipelines.backends import FallbackBackend, ScrapeBackend
from scrape_proxy.pipelines.dispatcher import Dispatcher
from scrape_proxy.pipelines.http_fetcher import make_http_client
from scrape_proxy.pipelines.maintenance import Maintenance
from scrape_proxy.pipelines.pending_queue import PendingQueue
from scrape_proxy.utils.logging import get_logger

logger = get_logger(__name__)




# ==== STARTUP ==== #

async def build_context(
    config: PoolConfig,
    *,
    store: Optional[CredentialStore] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    start_maintenance: bool = True,
) -> ProxyContext:
    """
    Build every shared resource and load the ledger.

    Args:
        config: Pool configuration
        store: Store override (defaults to the configured backend)
        http_client: Client override (defaults to make_http_client)
        start_maintenance: Start the periodic loops

    Returns:
        ProxyContext ready to serve requests

    Raises:
        Store errors from the initial ledger load; the service must not
        start without its ledger.
    """
    # --► STORE & LEDGER
    store = store or make_store(config)
    ledger = CredentialLedger(config, store)
    await ledger.load()

    # --► OUTBOUND COLLABORATORS
    client = http_client or make_http_client(config)
    scrape = ScrapeBackend.from_config(client, config)
    fallback = FallbackBackend.from_config(client, config)

    # --► DISPATCH
    selector = CredentialSelector.from_config(ledger, config)
    queue = PendingQueue(config.pending_queue_max)
    dispatcher = Dispatcher.with_http_client(ledger, selector, queue, client, scrape, fallback)

    if selector.pool_empty:
        logger.warning("No credentials configured; every request goes to the fallback backend")
    else:
        logger.info(
            "Credential pool: %s premium, %s free",
            len(selector.premium_ids),
            len(selector.free_ids),
        )

    maintenance = Maintenance.from_config(dispatcher, config)
    if start_maintenance:
        await maintenance.start()

    return ProxyContext(
        config=config,
        store=store,
        http_client=client,
        ledger=ledger,
        dispatcher=dispatcher,
        maintenance=maintenance,
    )




# ==== SHUTDOWN ==== #

async def close_context(ctx: ProxyContext) -> None:
    """Stop maintenance (with a final flush), then release clients."""
    await ctx.maintenance.stop()
    await ctx.dispatcher.aclose()
    await ctx.http_client.aclose()
    await ctx.store.close()
    logger.info("Proxy resources released")
