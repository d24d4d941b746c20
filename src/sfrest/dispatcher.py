"""Authenticated request dispatch with one transparent refresh-and-retry.

Each call moves through::

    Initial -> Sent -> Succeeded
                    -> AuthFailed -> Refreshing -> Retried-Succeeded | Retried-Failed
                    -> OtherFailed

``Refreshing`` is entered at most once per original call: the retried request
is marked ``is_retry`` and a 401 on it is final.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional, Union

import requests

from .environment import PROXY_ENDPOINT_HEADER, EnvironmentPolicy, route_request
from .exceptions import (
    ApplicationError,
    AuthExpiredError,
    MissingCredentialsError,
    TransportError,
)
from .multipart import BinaryPayload, ProgressBody, ProgressObserver, encode_multipart
from .session import CredentialStore, Credentials

_logger = logging.getLogger(__name__)

TOOLKIT_ID = "salesforce-toolkit-rest-python"
JSON_CONTENT_TYPE = "application/json"


class Surface(Enum):
    """API path families sharing one authentication protocol."""

    DATA = "data"
    CUSTOM_PROCEDURE = "apexrest"
    BINARY = "binary"

    @property
    def base_path(self) -> str:
        if self is Surface.CUSTOM_PROCEDURE:
            return "/services/apexrest"
        return "/services/data"

    @property
    def on_instance_only(self) -> bool:
        """Apex REST lives on the instance domain, never the page origin."""
        return self is Surface.CUSTOM_PROCEDURE


@dataclass(frozen=True)
class PendingRequest:
    surface: Surface
    path: str
    method: str = "GET"
    body: Optional[Union[bytes, str]] = None
    content_type: Optional[str] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    progress: Optional[ProgressObserver] = None
    is_retry: bool = False

    @classmethod
    def build(
        cls,
        surface: Surface,
        path: str,
        method: str = "GET",
        payload: Any = None,
        *,
        headers: Optional[Mapping[str, str]] = None,
        progress: Optional[ProgressObserver] = None,
    ) -> PendingRequest:
        """Request with a JSON body; strings are sent as already serialized."""
        method = method.upper()
        if payload is not None and not isinstance(payload, (str, bytes)):
            payload = json.dumps(payload)
        return cls(
            surface=surface,
            path=path,
            method=method,
            body=payload,
            content_type=None if method == "DELETE" else JSON_CONTENT_TYPE,
            headers=dict(headers or {}),
            progress=progress,
        )

    @classmethod
    def multipart(
        cls,
        path: str,
        fields: Mapping[str, Any],
        filename: str,
        payload_field: str,
        payload: BinaryPayload,
        *,
        progress: Optional[ProgressObserver] = None,
    ) -> PendingRequest:
        """Record-with-blob POST on the binary surface.

        The body and its boundary are built here, once, so a retry resends
        exactly the same bytes.
        """
        body, content_type = encode_multipart(fields, filename, payload_field, payload)
        return cls(
            surface=Surface.BINARY,
            path=path,
            method="POST",
            body=body,
            content_type=content_type,
            progress=progress,
        )

    def for_retry(self) -> PendingRequest:
        return dataclasses.replace(self, is_retry=True)


class Dispatcher:
    """Sends PendingRequests using the credentials in a CredentialStore."""

    def __init__(
        self,
        session: requests.Session,
        credentials: CredentialStore,
        environment: EnvironmentPolicy,
        *,
        timeout: float = 30.0,
    ) -> None:
        self.session = session
        self.credentials = credentials
        self.environment = environment
        self.timeout = timeout

    def send(self, request: PendingRequest) -> Any:
        """Execute ``request``; refresh and retry once on an expired session."""
        try:
            return self._attempt(request)
        except AuthExpiredError:
            if request.is_retry or not self.credentials.refresh_token:
                raise
            _logger.info(
                "Session expired on %s %s; refreshing and retrying once",
                request.method,
                request.path,
            )

        self.credentials.refresh()
        return self._attempt(request.for_retry())

    # --------------------------- Internal helpers --------------------

    def target_url(self, request: PendingRequest, creds: Credentials) -> str:
        surface = request.surface
        if self.environment.hosted and not surface.on_instance_only:
            origin = self.environment.page_origin
        else:
            origin = creds.instance_origin
        if not origin:
            raise MissingCredentialsError(["instance_url"])
        return f"{origin}{surface.base_path}{request.path}"

    def _headers(self, request: PendingRequest, creds: Credentials) -> dict:
        headers = {"X-User-Agent": f"{TOOLKIT_ID}/{creds.api_version}"}
        if creds.session_token:
            headers[self.environment.authz_header] = f"Bearer {creds.session_token}"
        if request.content_type:
            headers["Content-Type"] = request.content_type
        if request.surface is Surface.BINARY:
            headers["Accept"] = JSON_CONTENT_TYPE
        headers.update(request.headers)
        return headers

    def _attempt(self, request: PendingRequest) -> Any:
        creds = self.credentials.snapshot()
        target = self.target_url(request, creds)
        route = route_request(
            self.environment,
            target,
            always_proxy=request.surface.on_instance_only,
        )

        headers = self._headers(request, creds)
        if route.forward_to:
            headers[PROXY_ENDPOINT_HEADER] = route.forward_to

        body: Any = request.body
        if body is not None and request.progress is not None:
            body = ProgressBody(body, request.progress)

        _logger.debug(
            "%s %s%s%s",
            request.method,
            target,
            " via proxy" if route.forward_to else "",
            " (retry)" if request.is_retry else "",
        )
        try:
            r = self.session.request(
                request.method,
                route.url,
                data=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            _logger.warning("Request error for %s %s: %s", request.method, target, e)
            raise TransportError(f"{request.method} {target} failed: {e}") from e

        if r.status_code == 401:
            raise AuthExpiredError.from_response(r, target)
        if not 200 <= r.status_code < 300:
            err = ApplicationError.from_response(r, target)
            _logger.error("HTTP %s error for %s: %s", r.status_code, target, err.body)
            raise err

        return self._parse(request, r, target)

    def _parse(self, request: PendingRequest, r: requests.Response, target: str) -> Any:
        if not r.content:
            return None

        content_type = r.headers.get("Content-Type", "")
        if request.surface is Surface.BINARY and "json" not in content_type.lower():
            return r.content

        try:
            return r.json()
        except ValueError as e:
            raise TransportError(
                f"Malformed JSON response for {target}",
                status=r.status_code,
                reason=r.reason or "",
                body=r.text,
                response=r,
            ) from e
