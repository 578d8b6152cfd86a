"""Custom exceptions."""

from __future__ import annotations


class ProxyError(Exception):
    """Base exception for scrape proxy errors."""

    def __init__(self, kind: str, url: str, detail: str | None = None) -> None:
        self.kind = kind
        self.url = url
        self.detail = detail
        message = f"{kind} for {url}: {detail or ''}"
        super().__init__(message)


class CredentialError(ProxyError):
    """Credential-level rejection, recovered by excluding the credential."""

    def __init__(self, kind: str, url: str, credential_id: str, detail: str | None = None) -> None:
        self.credential_id = credential_id
        super().__init__(kind, url, detail)


class QuotaExceeded(CredentialError):
    def __init__(self, url: str, credential_id: str, detail: str | None = None) -> None:
        super().__init__("QuotaExceeded", url, credential_id, detail)


class ConcurrencyExceeded(CredentialError):
    def __init__(self, url: str, credential_id: str, detail: str | None = None) -> None:
        super().__init__("ConcurrencyExceeded", url, credential_id, detail)


class RateLimited(CredentialError):
    """Outbound 429; the credential has been put into cooldown."""

    def __init__(self, url: str, credential_id: str, detail: str | None = None) -> None:
        super().__init__("RateLimited", url, credential_id, detail)


class OutboundFailure(ProxyError):
    """Any non-429 outbound error, with the upstream status when there was one."""

    def __init__(
        self,
        kind: str,
        url: str,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(kind, url, detail)


class NoCredentialAvailable(ProxyError):
    def __init__(self, url: str) -> None:
        super().__init__("NoCredentialAvailable", url, "no eligible credential")


class PoolEmpty(ProxyError):
    def __init__(self, url: str) -> None:
        super().__init__("PoolEmpty", url, "no credentials configured")


class QueueFull(ProxyError):
    def __init__(self, url: str, max_size: int) -> None:
        super().__init__("QueueFull", url, f"pending queue at capacity ({max_size})")


class ShuttingDown(ProxyError):
    def __init__(self, url: str) -> None:
        super().__init__("ShuttingDown", url, "proxy is shutting down")


class DispatchFailed(ProxyError):
    """Terminal failure surfaced to the inbound caller."""

    def __init__(
        self,
        kind: str,
        url: str,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code or 500
        super().__init__(kind, url, detail)

    @classmethod
    def from_error(cls, exc: ProxyError) -> DispatchFailed:
        """Wrap the last known error, mirroring its upstream status."""
        return cls(
            exc.kind,
            exc.url,
            exc.detail,
            status_code=getattr(exc, "status_code", None),
        )
