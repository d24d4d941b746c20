"""Session credentials shared by every request a client makes."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import NamedTuple, Optional

import requests

from .config import DEFAULT_API_VERSION, DEFAULT_LOGIN_URL
from .environment import (
    PROXY_ENDPOINT_HEADER,
    EnvironmentPolicy,
    instance_origin_from_hostname,
    route_request,
)
from .exceptions import MissingCredentialsError, RefreshError

_logger = logging.getLogger(__name__)

TOKEN_PATH = "/services/oauth2/token"


class Credentials(NamedTuple):
    """Immutable view of the store, taken once per attempt."""

    session_token: Optional[str]
    refresh_token: Optional[str]
    api_version: str
    instance_origin: Optional[str]


class CredentialStore:
    """Holds the session and refresh tokens plus the endpoint metadata.

    Reads go through :meth:`snapshot`. The setters and the refresh exchange are
    the only writers. Concurrent :meth:`refresh` calls are coalesced: while
    one exchange is in flight, other callers wait for its outcome instead of
    starting their own.
    """

    def __init__(
        self,
        session: requests.Session,
        environment: EnvironmentPolicy,
        *,
        client_id: Optional[str] = None,
        login_url: str = DEFAULT_LOGIN_URL,
        api_version: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        self.session = session
        self.environment = environment
        self.client_id = client_id
        self.login_url = login_url.rstrip("/")
        self.timeout = timeout

        self._lock = threading.Lock()
        self._pending_refresh: Optional[Future] = None
        self._session_token: Optional[str] = None
        self._refresh_token: Optional[str] = None
        self._api_version: str = api_version or DEFAULT_API_VERSION
        self._instance_origin: Optional[str] = None

    # --------------------------- Accessors ----------------------------

    def snapshot(self) -> Credentials:
        with self._lock:
            return Credentials(
                self._session_token,
                self._refresh_token,
                self._api_version,
                self._instance_origin,
            )

    @property
    def session_token(self) -> Optional[str]:
        return self.snapshot().session_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self.snapshot().refresh_token

    @property
    def api_version(self) -> str:
        return self.snapshot().api_version

    @property
    def instance_origin(self) -> Optional[str]:
        return self.snapshot().instance_origin

    # --------------------------- Mutators -----------------------------

    def set_refresh_token(self, token: str) -> None:
        """Store the long-lived credential used to mint session tokens."""
        with self._lock:
            self._refresh_token = token

    def set_session_token(
        self,
        token: str,
        api_version: Optional[str] = None,
        instance_origin: Optional[str] = None,
    ) -> None:
        """Store the active session token and its endpoint metadata.

        ``api_version`` is kept when omitted (v31.0 unless configured).
        Without ``instance_origin`` a hosted page derives it from its own
        host name; anywhere else the current origin is kept.
        """
        if instance_origin is None and self.environment.hosted:
            hostname = self.environment.page_hostname
            if not hostname:
                raise MissingCredentialsError(["instance_url"])
            instance_origin = instance_origin_from_hostname(hostname)

        with self._lock:
            if instance_origin is None and self._instance_origin is None:
                raise MissingCredentialsError(["instance_url"])
            self._session_token = token
            if api_version:
                self._api_version = api_version
            if instance_origin is not None:
                self._instance_origin = instance_origin.rstrip("/")

    # --------------------------- Refresh ------------------------------

    def refresh(self) -> None:
        """Exchange the refresh token for a new session token.

        Raises RefreshError when the exchange fails. Callers that arrive
        while another refresh is running share its result.
        """
        with self._lock:
            in_flight = self._pending_refresh
            if in_flight is None:
                pending: Future = Future()
                self._pending_refresh = pending

        if in_flight is not None:
            _logger.debug("Waiting for in-flight token refresh")
            in_flight.result()
            return

        # Every exit, interrupts included, resolves the future and clears the slot.
        error: Optional[BaseException] = None
        try:
            self._exchange_refresh_token()
        except BaseException as exc:
            error = exc
            raise
        finally:
            self._finish_refresh(pending, error)

    def _finish_refresh(self, pending: Future, error: Optional[BaseException]) -> None:
        with self._lock:
            self._pending_refresh = None
        if error is None:
            pending.set_result(None)
        elif isinstance(error, Exception):
            pending.set_exception(error)
        else:
            # Interrupts stay with the owner thread; waiters get a refresh failure.
            failure = RefreshError(f"Token refresh interrupted: {type(error).__name__}")
            failure.__cause__ = error
            pending.set_exception(failure)

    def _exchange_refresh_token(self) -> None:
        refresh_token = self.refresh_token
        if not refresh_token:
            raise MissingCredentialsError(["refresh_token"])

        token_url = self.login_url + TOKEN_PATH
        route = route_request(self.environment, token_url)
        headers = {}
        if route.forward_to:
            headers[PROXY_ENDPOINT_HEADER] = route.forward_to

        data = {
            "grant_type": "refresh_token",
            "client_id": self.client_id or "",
            "refresh_token": refresh_token,
        }

        _logger.info("Refreshing access token via %s", token_url)
        try:
            r = self.session.request(
                "POST",
                route.url,
                data=data,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            _logger.warning("Token refresh failed: %s", e)
            raise RefreshError(f"Token refresh failed: {e}") from e

        if r.status_code >= 400:
            err = RefreshError.from_response(r, token_url)
            _logger.error("Token refresh rejected: HTTP %s %s", err.status, err.body)
            raise err

        try:
            payload = r.json()
            access_token = payload["access_token"]
            instance_url = payload["instance_url"]
        except (ValueError, KeyError, TypeError) as e:
            raise RefreshError(
                "Token refresh returned an unexpected response",
                status=r.status_code,
                reason=r.reason or "",
                body=r.text,
                response=r,
            ) from e

        self.set_session_token(access_token, None, instance_url)
        _logger.debug("Access token refreshed; instance=%s", instance_url)
