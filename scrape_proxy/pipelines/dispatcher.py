"""
Dispatch loop: one inbound request end-to-end.

This module implements the request state machine:
- DIRECT: plain GET with no credential
- SELECT: pick an eligible credential, premium first
- LADDER: escalate through cost tiers on that credential
- FALLBACK: alternate backend, only when no credential is configured
- QUEUED: wait in the pending queue for a credential to free up
- SUCCESS / FAILED: resolve the caller's future

Credential-level failures (rate limit, quota, concurrency, ladder
exhaustion) are recovered by excluding that credential and selecting again.
Because every retry grows the excluded set, a dispatch runs at most one
ladder per pooled credential before it settles.
"""

from __future__ import annotations

import asyncio
import functools
from collections import Counter
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from typing import Any, Optional

import httpx

from scrape_proxy.core.errors import (
    CredentialError,
    DispatchFailed,
    NoCredentialAvailable,
    OutboundFailure,
    PoolEmpty,
    ProxyError,
    QueueFull,
    ShuttingDown,
)
from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import (
    DEFAULT_LADDER,
    FetchOutcome,
    LadderStep,
    PendingRequest,
    UpstreamBody,
    make_outcome,
)
from scrape_proxy.core.selector import CredentialSelector
from scrape_proxy.pipelines.backends import FallbackClient, ScrapeClient
from scrape_proxy.pipelines.http_fetcher import fetch_direct
from scrape_proxy.pipelines.ladder import run_ladder
from scrape_proxy.pipelines.pending_queue import PendingQueue
from scrape_proxy.utils.logging import get_logger, mask_credential
from scrape_proxy.utils.urls import safe_url

logger = get_logger(__name__)

DirectFetch = Callable[[str], Awaitable[UpstreamBody]]




# ==== DISPATCHER ==== #

class Dispatcher:
    """
    Orchestrates inbound fetches over the credential pool.

    Attributes:
        ledger: Shared credential ledger
        selector: Credential selector over the configured pool
        queue: Pending queue for requests with no eligible credential
        stats: Outcome counters (direct, credential, fallback, queued, ...)
        _direct: Credential-less fetch of the target
        _scrape: Scraping backend client
        _fallback: Fallback backend client
        _steps: Ladder steps
        _tasks: Background drain tasks kept alive until done
    """

    def __init__(
        self,
        ledger: CredentialLedger,
        selector: CredentialSelector,
        queue: PendingQueue,
        direct: DirectFetch,
        scrape: ScrapeClient,
        fallback: FallbackClient,
        steps: Sequence[LadderStep] = DEFAULT_LADDER,
    ) -> None:
        self.ledger = ledger
        self.selector = selector
        self.queue = queue
        self.stats: Counter[str] = Counter()
        self._direct = direct
        self._scrape = scrape
        self._fallback = fallback
        self._steps = tuple(steps)
        self._tasks: set[asyncio.Task[Any]] = set()

    @classmethod
    def with_http_client(
        cls,
        ledger: CredentialLedger,
        selector: CredentialSelector,
        queue: PendingQueue,
        client: httpx.AsyncClient,
        scrape: ScrapeClient,
        fallback: FallbackClient,
    ) -> Dispatcher:
        """Build a dispatcher whose direct fetch uses the shared client."""
        return cls(
            ledger,
            selector,
            queue,
            functools.partial(fetch_direct, client),
            scrape,
            fallback,
        )




    # --► PUBLIC API

    async def dispatch(self, url: str) -> FetchOutcome:
        """
        Serve one inbound fetch.

        Returns once the request settles, which for a queued request is
        whenever a later drain manages to serve it.

        Returns:
            FetchOutcome with the fetched body

        Raises:
            DispatchFailed: Terminal failure, with the status to mirror
        """
        pending = PendingRequest(url)
        await self._guarded(pending, self._run_direct(pending))
        return await pending.future

    async def drain_one(self) -> bool:
        """
        Redrive the oldest queued request if a credential is available.

        Returns:
            True if a request was dequeued and redriven
        """
        self.queue.discard_done()

        if not len(self.queue):
            return False

        if self.selector.pool_empty:
            pending = self.queue.pop()
            await self._redrive(pending, self._run_fallback(pending, PoolEmpty(pending.url)))
            return True

        credential_id = self.selector.select()
        if credential_id is None:
            return False

        pending = self.queue.pop()
        logger.info(
            "Redriving queued request for %s via %s (%s still queued)",
            safe_url(pending.url),
            mask_credential(credential_id),
            len(self.queue),
        )
        await self._redrive(pending, self._run_select(pending, first_choice=credential_id))
        return True

    def schedule_drain(self, count: int = 1) -> int:
        """
        Start up to count drain_one() tasks without waiting for them.

        Returns:
            Number of drain tasks started
        """
        started = 0

        for _ in range(min(count, len(self.queue))):
            task = asyncio.create_task(self.drain_one())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started += 1

        return started

    async def aclose(self) -> None:
        """
        Cancel outstanding drain tasks and fail every request still waiting.

        Callers that were queued or mid-redrive get DispatchFailed with a
        503 instead of hanging until their connection drops.
        """
        for task in list(self._tasks):
            task.cancel()

        await asyncio.gather(*self._tasks, return_exceptions=True)

        abandoned = len(self.queue)
        while len(self.queue):
            self._abort(self.queue.pop())

        if abandoned:
            logger.warning("Shutting down with %s queued requests; failed with 503", abandoned)




    # --► STATES

    async def _run_direct(self, pending: PendingRequest) -> None:
        try:
            result = await self._direct(pending.url)
        except OutboundFailure as exc:
            logger.debug("Direct fetch failed for %s: %s", safe_url(pending.url), exc.kind)
        else:
            self._succeed(
                pending,
                make_outcome(
                    pending.url,
                    result.body,
                    "direct",
                    content_type=result.content_type,
                ),
            )
            return

        await self._run_select(pending)

    async def _run_select(
        self,
        pending: PendingRequest,
        *,
        first_choice: Optional[str] = None,
    ) -> None:
        if self.selector.pool_empty:
            await self._run_fallback(pending, PoolEmpty(pending.url))
            return

        tried: set[str] = set()
        last_failure: Optional[OutboundFailure] = None
        credential_id = first_choice

        while True:
            if credential_id is None:
                credential_id = self.selector.select(exclude=tried)

            if credential_id is None:
                # A non-429 failure with nothing left to try is terminal;
                # otherwise credentials are only busy, cooling or spent.
                if last_failure is not None:
                    self._fail(pending, last_failure)
                else:
                    self._enqueue(pending, NoCredentialAvailable(pending.url))
                return

            try:
                outcome = await run_ladder(
                    pending.url,
                    credential_id,
                    self.ledger,
                    self._scrape,
                    self._steps,
                )
            except CredentialError as exc:
                self.stats[exc.kind] += 1
                logger.info(
                    "Credential %s skipped for %s: %s",
                    mask_credential(credential_id),
                    safe_url(pending.url),
                    exc.kind,
                )
            except OutboundFailure as exc:
                last_failure = exc
                self.stats["ladder_exhausted"] += 1
                logger.info(
                    "Ladder exhausted on %s for %s: %s (status=%s)",
                    mask_credential(credential_id),
                    safe_url(pending.url),
                    exc.kind,
                    exc.status_code,
                )
            else:
                self._succeed(pending, outcome)
                return

            tried.add(credential_id)
            credential_id = None

    async def _run_fallback(self, pending: PendingRequest, reason: ProxyError) -> None:
        logger.info("Routing %s to fallback: %s", safe_url(pending.url), reason.kind)

        try:
            result = await self._fallback.fetch(pending.url)
        except OutboundFailure as exc:
            logger.warning(
                "Fallback failed for %s: %s (status=%s)",
                safe_url(pending.url),
                exc.kind,
                exc.status_code,
            )
            self._fail(pending, exc)
            return

        self._succeed(
            pending,
            make_outcome(
                pending.url,
                result.body,
                "fallback",
                content_type=result.content_type,
            ),
        )




    # --► TERMINAL TRANSITIONS

    def _enqueue(self, pending: PendingRequest, reason: ProxyError) -> None:
        try:
            self.queue.enqueue(pending)
        except QueueFull as exc:
            logger.warning("Pending queue full; rejecting %s", safe_url(pending.url))
            self._fail(pending, exc, status_code=503)
            return

        self.stats["queued"] += 1
        logger.info(
            "%s for %s; queued (depth=%s)",
            reason.kind,
            safe_url(pending.url),
            len(self.queue),
        )

    def _succeed(self, pending: PendingRequest, outcome: FetchOutcome) -> None:
        if not pending.future.done():
            pending.future.set_result(outcome)

        self.stats[outcome["source"]] += 1

        if len(self.queue):
            self.schedule_drain(1)

    def _fail(
        self,
        pending: PendingRequest,
        exc: ProxyError,
        status_code: Optional[int] = None,
    ) -> None:
        failure = DispatchFailed.from_error(exc)
        if status_code is not None:
            failure.status_code = status_code

        if not pending.future.done():
            pending.future.set_exception(failure)

        self.stats["failed"] += 1

    def _abort(self, pending: PendingRequest) -> None:
        if not pending.future.done():
            self._fail(pending, ShuttingDown(pending.url), status_code=503)

    async def _redrive(
        self,
        pending: PendingRequest,
        step: Coroutine[Any, Any, None],
    ) -> None:
        # The request already left the queue; a cancelled drain must still settle it.
        try:
            await self._guarded(pending, step)
        except asyncio.CancelledError:
            self._abort(pending)
            raise

    async def _guarded(
        self,
        pending: PendingRequest,
        step: Coroutine[Any, Any, None],
    ) -> None:
        # Whatever goes wrong, the caller's future must settle.
        try:
            await step
        except Exception as exc:
            logger.exception("Dispatch crashed for %s", safe_url(pending.url))
            if not pending.future.done():
                pending.future.set_exception(
                    DispatchFailed("InternalError", pending.url, str(exc)[:200]),
                )
            self.stats["failed"] += 1
