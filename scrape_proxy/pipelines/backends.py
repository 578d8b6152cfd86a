"""
Outbound scraping backends.

This module provides:
- ScrapeBackend: GET against the scraping service with one pooled credential
- FallbackBackend: POST to a headless-browser content service, used when
  no credential is configured at all
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx

from scrape_proxy.config.constants import RATE_LIMIT_STATUS
from scrape_proxy.core.errors import OutboundFailure, RateLimited
from scrape_proxy.core.models import PoolConfig, UpstreamBody
from scrape_proxy.pipelines.http_fetcher import (
    CLIENT_ERRORS,
    body_from_response,
    failure_from_exception,
)

FALLBACK_GOTO_OPTIONS: dict[str, object] = {"waitUntil": "networkidle2", "timeout": 60_000}




# ==== COLLABORATOR PROTOCOLS ==== #

class ScrapeClient(Protocol):
    async def fetch(
        self, credential_id: str, url: str, params: dict[str, str]
    ) -> UpstreamBody: ...


class FallbackClient(Protocol):
    async def fetch(self, url: str) -> UpstreamBody: ...




# ==== SCRAPING BACKEND ==== #

class ScrapeBackend:
    """
    Scraping service called with a credential and ladder-step parameters.

    Attributes:
        _client: Shared async HTTP client
        endpoint: Scraping service URL
        credential_param: Query parameter carrying the credential
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str,
        credential_param: str = "api_key",
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.credential_param = credential_param

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: PoolConfig) -> ScrapeBackend:
        return cls(client, config.scrape_endpoint, config.credential_param)

    async def fetch(
        self, credential_id: str, url: str, params: dict[str, str]
    ) -> UpstreamBody:
        """
        Fetch url through the scraping service.

        Raises:
            RateLimited: The service answered 429 for this credential
            OutboundFailure: Any other transport error or error status
        """
        query = {self.credential_param: credential_id, "url": url, **params}

        try:
            resp = await self._client.get(self.endpoint, params=query)
        except CLIENT_ERRORS as exc:
            raise failure_from_exception(exc, url) from exc

        if resp.status_code == RATE_LIMIT_STATUS:
            raise RateLimited(url, credential_id, resp.text[:200])

        return body_from_response(resp, url)




# ==== FALLBACK BACKEND ==== #

class FallbackBackend:
    """
    Headless-browser content service used when the pool is empty.

    The token and launch options travel as query parameters, the target
    and navigation options as the JSON body.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: Optional[str],
        token: str = "",
        launch: str = "{}",
    ) -> None:
        self._client = client
        self.endpoint = endpoint
        self.token = token
        self.launch = launch

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: PoolConfig) -> FallbackBackend:
        return cls(
            client,
            config.fallback_endpoint,
            config.fallback_token,
            config.fallback_launch,
        )

    async def fetch(self, url: str) -> UpstreamBody:
        """
        Render url through the fallback service.

        Raises:
            OutboundFailure: No endpoint configured, transport error or
                error status
        """
        if not self.endpoint:
            raise OutboundFailure("FallbackUnavailable", url, "no fallback endpoint configured")

        try:
            resp = await self._client.post(
                self.endpoint,
                params={"token": self.token, "launch": self.launch},
                json={"url": url, "gotoOptions": FALLBACK_GOTO_OPTIONS},
            )
        except CLIENT_ERRORS as exc:
            raise failure_from_exception(exc, url) from exc

        return body_from_response(resp, url)
