import json
from unittest.mock import MagicMock

import pytest

from sfrest.client import SalesforceClient
from sfrest.config import SFConfig

INSTANCE = "https://na1.salesforce.com"


def fake_response(
    status=200,
    json_body=None,
    content=None,
    content_type=None,
    reason="OK",
):
    """Build a MagicMock that quacks like requests.Response."""
    r = MagicMock()
    r.status_code = status
    r.reason = reason
    if json_body is not None:
        content = json.dumps(json_body).encode("utf-8")
        content_type = content_type or "application/json;charset=UTF-8"
        r.json.return_value = json_body
    else:
        r.json.side_effect = ValueError("No JSON object could be decoded")
    r.content = content or b""
    r.text = r.content.decode("utf-8", "replace")
    r.headers = {"Content-Type": content_type} if content_type else {}
    return r


@pytest.fixture
def make_response():
    return fake_response


@pytest.fixture(autouse=True)
def clean_sf_env(monkeypatch):
    """Keep the developer's SF_* variables out of the tests.

    setenv first so monkeypatch records the original state and also removes
    anything a test loads from a .env file.
    """
    for name in (
        "SF_CLIENT_ID",
        "SF_LOGIN_URL",
        "SF_PROXY_URL",
        "SF_PAGE_URL",
        "SF_ACCESS_TOKEN",
        "SF_REFRESH_TOKEN",
        "SF_INSTANCE_URL",
        "SF_API_VERSION",
        "SF_ASYNC",
        "SF_TIMEOUT",
        "SF_MAX_WORKERS",
    ):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


def _connected(**overrides):
    values = dict(
        client_id="cid",
        access_token="00DOLDTOKEN",
        refresh_token="rtoken",
        instance_url=INSTANCE,
        api_version="v60.0",
        async_requests=False,
    )
    values.update(overrides)
    client = SalesforceClient(SFConfig(**values))
    client.connect()
    return client


@pytest.fixture
def sync_client():
    """Synchronous, packaged-app client with session and refresh tokens."""
    client = _connected()
    yield client
    client.close()


@pytest.fixture
def async_client():
    client = _connected(async_requests=True)
    yield client
    client.close()


@pytest.fixture
def proxied_client():
    """Client configured with an explicit forwarding proxy."""
    client = _connected(proxy_url="https://proxy.example.com/proxy/")
    yield client
    client.close()


@pytest.fixture
def hosted_client():
    """Client running behind a hosted Visualforce page."""
    client = _connected(
        page_url="https://c.na1.visual.force.com/apex/Demo",
        instance_url=None,
    )
    yield client
    client.close()
