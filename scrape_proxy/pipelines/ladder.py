"""
Fetch attempt ladder: escalating cost tiers against one credential.

For each step, in order:
1. check-and-charge the credential (abort the ladder if over quota or
   at the concurrency cap)
2. call the scraping backend with the step's parameters
3. give the in-flight slot back, whatever happened

A success returns immediately. A 429 cools the credential down and aborts
the whole ladder. Any other error moves on to the next, more expensive
step; spent quota is not refunded.
"""

from __future__ import annotations

from collections.abc import Sequence

from scrape_proxy.core.errors import OutboundFailure, RateLimited
from scrape_proxy.core.ledger import CredentialLedger
from scrape_proxy.core.models import DEFAULT_LADDER, FetchOutcome, LadderStep, make_outcome
from scrape_proxy.pipelines.backends import ScrapeClient
from scrape_proxy.utils.logging import get_logger, mask_credential
from scrape_proxy.utils.urls import safe_url

logger = get_logger(__name__)


async def run_ladder(
    url: str,
    credential_id: str,
    ledger: CredentialLedger,
    backend: ScrapeClient,
    steps: Sequence[LadderStep] = DEFAULT_LADDER,
) -> FetchOutcome:
    """
    Drive one request through the ladder on one credential.

    Args:
        url: Target URL
        credential_id: Credential chosen by the selector
        ledger: Shared credential ledger
        backend: Scraping backend client
        steps: Ladder steps, cheapest first

    Returns:
        FetchOutcome from the first step that succeeds

    Raises:
        QuotaExceeded: Credential out of quota before a step
        ConcurrencyExceeded: Credential at its in-flight cap before a step
        RateLimited: Backend answered 429; credential is now cooling down
        OutboundFailure: Every step failed; the last step's error
    """
    last_error: OutboundFailure | None = None

    for step in steps:
        await ledger.try_charge(credential_id, step.cost, url)

        try:
            result = await backend.fetch(credential_id, url, dict(step.params))
        except RateLimited:
            await ledger.cool_down(credential_id)
            raise
        except OutboundFailure as exc:
            last_error = exc
            logger.info(
                "Step %s failed for %s via %s: %s",
                step.name,
                safe_url(url),
                mask_credential(credential_id),
                exc.kind,
            )
            continue
        finally:
            await ledger.release(credential_id)

        return make_outcome(
            url,
            result.body,
            "credential",
            content_type=result.content_type,
            credential_id=credential_id,
            step=step.name,
        )

    if last_error is None:
        raise OutboundFailure("LadderExhausted", url, "no ladder steps configured")

    raise last_error
