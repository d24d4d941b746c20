from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Iterator, Mapping, Optional, Sequence, Union
from urllib.parse import quote, urlencode

import requests

from .config import SFConfig
from .dispatcher import Dispatcher, PendingRequest, Surface
from .env_loader import load_env_files
from .environment import EnvironmentPolicy
from .exceptions import MissingCredentialsError
from .multipart import BinaryPayload, ProgressObserver
from .session import CredentialStore

_logger = logging.getLogger(__name__)

# Ensure .env is loaded for library use as well (e.g. scripts importing SalesforceClient)
load_env_files(quiet=True)

# Characters encodeURIComponent leaves alone
_URI_COMPONENT_SAFE = "!~*'()"
_DATA_PREFIX = "services/data"

CallResult = Union[Future, Any]


def _data_relative(url: str) -> str:
    """Strip everything up to and including ``services/data`` from ``url``."""
    index = url.find(_DATA_PREFIX)
    if index > -1:
        return url[index + len(_DATA_PREFIX) :]
    return url


# ----------------------------------------------------------------------
# Main API client
# ----------------------------------------------------------------------
class SalesforceClient:
    """Salesforce REST client with transparent session refresh.

    Every endpoint method builds one request and hands it to the dispatcher.
    With ``async_requests`` (the default) the call runs on a worker thread
    and a ``concurrent.futures.Future`` is returned; it resolves to the
    parsed response or raises the typed error from ``sfrest.exceptions``.

    With ``async_requests=False`` each call blocks the calling thread until
    the transport completes, then returns the result or raises. Do not use
    synchronous mode from an event loop or UI thread.
    """

    def __init__(self, cfg: Optional[SFConfig] = None) -> None:
        self.cfg = cfg or SFConfig.from_env()
        self.environment = EnvironmentPolicy.detect(self.cfg.page_url, self.cfg.proxy_url)
        self.session = requests.Session()
        self.credentials = CredentialStore(
            self.session,
            self.environment,
            client_id=self.cfg.client_id,
            login_url=self.cfg.login_url,
            api_version=self.cfg.api_version,
            timeout=self.cfg.timeout,
        )
        self.dispatcher = Dispatcher(
            self.session,
            self.credentials,
            self.environment,
            timeout=self.cfg.timeout,
        )
        self._executor: Optional[ThreadPoolExecutor] = None

    def __enter__(self) -> SalesforceClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # --------------------------- Credentials -------------------------

    @property
    def api_version(self) -> str:
        return self.credentials.api_version

    @property
    def instance_url(self) -> Optional[str]:
        return self.credentials.instance_origin

    def connect(self) -> None:
        """Seed credentials from the configuration.

        A configured access token is used as-is. With only a refresh token
        the exchange is performed now, so the instance URL is known before
        the first call.
        """
        if self.cfg.refresh_token:
            self.credentials.set_refresh_token(self.cfg.refresh_token)

        if self.cfg.access_token:
            _logger.debug("Using existing access token from configuration.")
            self.credentials.set_session_token(
                self.cfg.access_token, self.cfg.api_version, self.cfg.instance_url
            )
        elif self.cfg.refresh_token:
            self.credentials.refresh()
        else:
            raise MissingCredentialsError(["SF_ACCESS_TOKEN", "SF_REFRESH_TOKEN"])

        _logger.info(
            "Connected to Salesforce instance=%s api=%s hosted=%s",
            self.instance_url,
            self.api_version,
            self.environment.hosted,
        )

    def set_refresh_token(self, token: str) -> None:
        self.credentials.set_refresh_token(token)

    def set_session_token(
        self,
        token: str,
        api_version: Optional[str] = None,
        instance_url: Optional[str] = None,
    ) -> None:
        self.credentials.set_session_token(token, api_version, instance_url)

    def refresh_access_token(self) -> None:
        self.credentials.refresh()

    # --------------------------- Dispatch ----------------------------

    def _pool(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.cfg.max_workers,
                thread_name_prefix="sfrest",
            )
        return self._executor

    def call(self, request: PendingRequest) -> CallResult:
        if self.cfg.async_requests:
            return self._pool().submit(self.dispatcher.send, request)
        return self.dispatcher.send(request)

    def ajax(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        progress: Optional[ProgressObserver] = None,
    ) -> CallResult:
        """Call ``/services/data`` + ``path``."""
        return self.call(PendingRequest.build(Surface.DATA, path, method, payload, progress=progress))

    def _versioned(self, path: str) -> str:
        return f"/{self.api_version}{path}"

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        self.session.close()

    # --------------------------- Data API ----------------------------

    def versions(self) -> CallResult:
        """List the API versions available on the instance."""
        return self.ajax("/")

    def resources(self) -> CallResult:
        return self.ajax(self._versioned("/"))

    def describe_global(self) -> CallResult:
        return self.ajax(self._versioned("/sobjects/"))

    def metadata(self, objtype: str) -> CallResult:
        return self.ajax(self._versioned(f"/sobjects/{objtype}/"))

    def describe(self, objtype: str) -> CallResult:
        return self.ajax(self._versioned(f"/sobjects/{objtype}/describe/"))

    def create(self, objtype: str, fields: Mapping[str, Any]) -> CallResult:
        return self.ajax(self._versioned(f"/sobjects/{objtype}/"), "POST", fields)

    def retrieve(
        self,
        objtype: str,
        record_id: str,
        fields: Optional[Union[str, Sequence[str]]] = None,
    ) -> CallResult:
        path = self._versioned(f"/sobjects/{objtype}/{record_id}")
        if fields:
            fieldlist = fields if isinstance(fields, str) else ",".join(fields)
            path += "?fields=" + quote(fieldlist, safe=",")
        return self.ajax(path)

    def upsert(
        self,
        objtype: str,
        external_id_field: str,
        external_id: str,
        fields: Mapping[str, Any],
    ) -> CallResult:
        path = self._versioned(
            f"/sobjects/{objtype}/{external_id_field}/{external_id}?_HttpMethod=PATCH"
        )
        return self.ajax(path, "POST", fields)

    def update(self, objtype: str, record_id: str, fields: Mapping[str, Any]) -> CallResult:
        path = self._versioned(f"/sobjects/{objtype}/{record_id}?_HttpMethod=PATCH")
        return self.ajax(path, "POST", fields)

    def delete(self, objtype: str, record_id: str) -> CallResult:
        return self.ajax(self._versioned(f"/sobjects/{objtype}/{record_id}"), "DELETE")

    def query(self, soql: str) -> CallResult:
        """Run a SOQL query."""
        return self.ajax(self._versioned("/query?q=" + quote(soql, safe=_URI_COMPONENT_SAFE)))

    def query_more(self, url: str) -> CallResult:
        """Fetch the next page given a ``nextRecordsUrl``."""
        return self.ajax(_data_relative(url))

    def search(self, sosl: str) -> CallResult:
        """Run a SOSL search."""
        return self.ajax(self._versioned("/search?q=" + quote(sosl, safe=_URI_COMPONENT_SAFE)))

    def query_all_iter(self, soql: str) -> Iterator[Dict[str, Any]]:
        """Yield records across pages via nextRecordsUrl.

        Always blocks, whatever the client mode.
        """
        path = self._versioned("/query?q=" + quote(soql, safe=_URI_COMPONENT_SAFE))
        res = self.dispatcher.send(PendingRequest.build(Surface.DATA, path))
        yield from res.get("records", [])
        next_url = res.get("nextRecordsUrl")
        while next_url:
            res = self.dispatcher.send(PendingRequest.build(Surface.DATA, _data_relative(next_url)))
            yield from res.get("records", [])
            next_url = res.get("nextRecordsUrl")

    # --------------------------- Apex REST ---------------------------

    def apexrest(
        self,
        path: str,
        method: str = "GET",
        payload: Any = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> CallResult:
        """Call a custom Apex REST endpoint under ``/services/apexrest``.

        For GET the payload (mapping or pre-encoded string) becomes the query
        string; for other methods non-string payloads are sent as JSON.
        ``headers`` are added to the request as-is.
        """
        method = method.upper()
        if method == "GET" and payload:
            query = payload if isinstance(payload, str) else urlencode(payload, doseq=True)
            path += ("&" if "?" in path else "?") + query
            payload = None
        request = PendingRequest.build(
            Surface.CUSTOM_PROCEDURE, path, method, payload, headers=headers
        )
        return self.call(request)

    # --------------------------- Binary API --------------------------

    def blob(
        self,
        path: str,
        fields: Mapping[str, Any],
        filename: str,
        payload_field: str,
        payload: BinaryPayload,
        progress: Optional[ProgressObserver] = None,
    ) -> CallResult:
        """POST a record together with its blob data.

        ``fields`` e.g. ``{"ContentDocumentId": "069D00000000so2",
        "PathOnClient": "Q1 Sales Brochure.pdf"}``; ``payload_field`` is
        ``VersionData`` for ContentVersion, ``Body`` for Document.
        ``progress(bytes_sent, total_bytes)`` observes the upload.
        """
        request = PendingRequest.multipart(
            path, fields, filename, payload_field, payload, progress=progress
        )
        return self.call(request)

    def create_blob(
        self,
        objtype: str,
        fields: Mapping[str, Any],
        filename: str,
        payload_field: str,
        payload: BinaryPayload,
        progress: Optional[ProgressObserver] = None,
    ) -> CallResult:
        path = self._versioned(f"/sobjects/{objtype}/")
        return self.blob(path, fields, filename, payload_field, payload, progress)

    def update_blob(
        self,
        objtype: str,
        record_id: str,
        fields: Mapping[str, Any],
        filename: str,
        payload_field: str,
        payload: BinaryPayload,
        progress: Optional[ProgressObserver] = None,
    ) -> CallResult:
        path = self._versioned(f"/sobjects/{objtype}/{record_id}?_HttpMethod=PATCH")
        return self.blob(path, fields, filename, payload_field, payload, progress)

    def get_file(self, path: str) -> CallResult:
        """Download raw file content, e.g. a ContentVersion's VersionData."""
        return self.call(PendingRequest(surface=Surface.BINARY, path=_data_relative(path)))
