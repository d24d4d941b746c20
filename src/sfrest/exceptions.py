from __future__ import annotations

from typing import Any, Optional


class SalesforceError(RuntimeError):
    """Base class for every error raised by sfrest."""


class MissingCredentialsError(SalesforceError):
    """Raised when required credentials or settings are not present."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__("Missing required credentials: " + ", ".join(missing))


class TransportError(SalesforceError):
    """A call did not produce a usable response.

    Carries the HTTP status (0 when no response arrived), the status text and
    the raw response body so callers can inspect what the server said.
    """

    def __init__(
        self,
        message: str,
        *,
        status: int = 0,
        reason: str = "",
        body: Any = None,
        response: Any = None,
    ) -> None:
        self.status = status
        self.reason = reason
        self.body = body
        self.response = response
        super().__init__(message)

    @classmethod
    def from_response(cls, response: Any, url: Optional[str] = None) -> TransportError:
        status = response.status_code
        reason = response.reason or ""
        body = response.text
        where = f" for {url}" if url else ""
        return cls(
            f"HTTP {status} {reason}{where}".rstrip(),
            status=status,
            reason=reason,
            body=body,
            response=response,
        )


class AuthExpiredError(TransportError):
    """HTTP 401: the session token was rejected."""


class ApplicationError(TransportError):
    """Any other non-2xx status. Never retried."""


class RefreshError(TransportError):
    """The refresh-token exchange failed."""
