"""Tests for sfrest.session module."""

import threading
import time
from unittest.mock import MagicMock, patch

import pytest
import requests

from sfrest.environment import EnvironmentPolicy
from sfrest.exceptions import MissingCredentialsError, RefreshError
from sfrest.session import CredentialStore

LOGIN = "https://login.salesforce.com"


@pytest.fixture
def store():
    s = CredentialStore(requests.Session(), EnvironmentPolicy(), client_id="cid", login_url=LOGIN + "/")
    s.set_session_token("00DOLD", "v60.0", "https://na1.salesforce.com")
    s.set_refresh_token("rtoken")
    return s


class TestSetters:
    def test_refresh_token_accepts_anything(self):
        s = CredentialStore(requests.Session(), EnvironmentPolicy())
        s.set_refresh_token("")
        assert s.refresh_token == ""

    def test_session_token_defaults_api_version(self):
        s = CredentialStore(requests.Session(), EnvironmentPolicy())
        s.set_session_token("tok", instance_origin="https://na1.salesforce.com/")

        snap = s.snapshot()
        assert snap.session_token == "tok"
        assert snap.api_version == "v31.0"
        assert snap.instance_origin == "https://na1.salesforce.com"

    def test_api_version_kept_when_omitted(self, store):
        store.set_session_token("00DNEW", None, "https://na2.salesforce.com")

        assert store.api_version == "v60.0"
        assert store.instance_origin == "https://na2.salesforce.com"

    def test_configured_api_version(self):
        s = CredentialStore(requests.Session(), EnvironmentPolicy(), api_version="v58.0")
        s.set_session_token("tok", None, "https://na1.salesforce.com")

        assert s.api_version == "v58.0"

    def test_hosted_derives_instance_from_page(self):
        env = EnvironmentPolicy.detect(page_url="https://abc.my.salesforce.com/apex/Page")
        s = CredentialStore(requests.Session(), env)

        s.set_session_token("tok")

        assert s.instance_origin == "https://abc.my.salesforce.com"

    def test_hosted_without_page_host_raises(self):
        s = CredentialStore(requests.Session(), EnvironmentPolicy(hosted=True))

        with pytest.raises(MissingCredentialsError) as exc_info:
            s.set_session_token("tok")

        assert exc_info.value.missing == ["instance_url"]

    def test_not_hosted_keeps_current_origin(self, store):
        store.set_session_token("00DNEW")

        assert store.instance_origin == "https://na1.salesforce.com"
        assert store.session_token == "00DNEW"

    def test_not_hosted_without_origin_raises(self):
        s = CredentialStore(requests.Session(), EnvironmentPolicy())

        with pytest.raises(MissingCredentialsError) as exc_info:
            s.set_session_token("tok")

        assert exc_info.value.missing == ["instance_url"]
        assert s.session_token is None


class TestRefresh:
    def test_successful_refresh(self, store, make_response):
        resp = make_response(
            json_body={"access_token": "00DNEW", "instance_url": "https://na2.salesforce.com"}
        )

        with patch.object(store.session, "request", return_value=resp) as req:
            store.refresh()

        assert store.session_token == "00DNEW"
        assert store.instance_origin == "https://na2.salesforce.com"
        assert store.api_version == "v60.0"

        method, url = req.call_args.args
        assert method == "POST"
        assert url == LOGIN + "/services/oauth2/token"
        assert req.call_args.kwargs["data"] == {
            "grant_type": "refresh_token",
            "client_id": "cid",
            "refresh_token": "rtoken",
        }
        assert "SalesforceProxy-Endpoint" not in req.call_args.kwargs["headers"]

    def test_refresh_through_proxy(self, make_response):
        env = EnvironmentPolicy.detect(proxy_url="https://proxy.example.com/p")
        s = CredentialStore(requests.Session(), env, client_id="cid")
        s.set_refresh_token("rtoken")
        resp = make_response(
            json_body={"access_token": "00DNEW", "instance_url": "https://na2.salesforce.com"}
        )

        with patch.object(s.session, "request", return_value=resp) as req:
            s.refresh()

        assert req.call_args.args[1] == "https://proxy.example.com/p"
        assert req.call_args.kwargs["headers"] == {
            "SalesforceProxy-Endpoint": LOGIN + "/services/oauth2/token"
        }
        assert s.instance_origin == "https://na2.salesforce.com"

    def test_hosted_refresh_goes_direct(self, make_response):
        env = EnvironmentPolicy.detect(page_url="https://c.na1.visual.force.com/apex/X")
        s = CredentialStore(requests.Session(), env, client_id="cid")
        s.set_refresh_token("rtoken")
        resp = make_response(
            json_body={"access_token": "00DNEW", "instance_url": "https://na1.salesforce.com"}
        )

        with patch.object(s.session, "request", return_value=resp) as req:
            s.refresh()

        assert req.call_args.args[1] == LOGIN + "/services/oauth2/token"

    def test_rejected_refresh(self, store, make_response):
        resp = make_response(
            status=400,
            json_body={"error": "invalid_grant"},
            reason="Bad Request",
        )

        with patch.object(store.session, "request", return_value=resp):
            with pytest.raises(RefreshError) as exc_info:
                store.refresh()

        assert exc_info.value.status == 400
        assert "invalid_grant" in exc_info.value.body
        assert store.session_token == "00DOLD"

    def test_network_failure(self, store):
        boom = requests.ConnectionError("connection refused")

        with patch.object(store.session, "request", side_effect=boom):
            with pytest.raises(RefreshError) as exc_info:
                store.refresh()

        assert exc_info.value.status == 0
        assert exc_info.value.__cause__ is boom

    def test_unexpected_payload(self, store, make_response):
        with patch.object(store.session, "request", return_value=make_response(json_body={"x": 1})):
            with pytest.raises(RefreshError, match="unexpected response"):
                store.refresh()

    def test_missing_refresh_token(self, make_response):
        s = CredentialStore(requests.Session(), EnvironmentPolicy())

        with patch.object(s.session, "request") as req:
            with pytest.raises(MissingCredentialsError):
                s.refresh()

        req.assert_not_called()

    def test_store_usable_after_failed_refresh(self, store, make_response):
        ok = make_response(
            json_body={"access_token": "00DNEW", "instance_url": "https://na1.salesforce.com"}
        )
        bad = make_response(status=500, reason="Server Error", content=b"oops")

        with patch.object(store.session, "request", side_effect=[bad, ok]):
            with pytest.raises(RefreshError):
                store.refresh()
            store.refresh()

        assert store.session_token == "00DNEW"


class TestRefreshCoalescing:
    def test_concurrent_refreshes_share_one_exchange(self, store):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_exchange():
            calls.append(threading.current_thread().name)
            started.set()
            release.wait(5)
            store.set_session_token("00DNEW")

        store._exchange_refresh_token = slow_exchange
        errors = []

        def run():
            try:
                store.refresh()
            except Exception as e:  # pragma: no cover
                errors.append(e)

        first = threading.Thread(target=run)
        first.start()
        assert started.wait(5)
        others = [threading.Thread(target=run) for _ in range(3)]
        for t in others:
            t.start()
        time.sleep(0.2)
        release.set()
        for t in [first, *others]:
            t.join(5)

        assert len(calls) == 1
        assert errors == []
        assert store.session_token == "00DNEW"

    def test_waiters_see_the_same_failure(self, store):
        started = threading.Event()
        release = threading.Event()

        def failing_exchange():
            started.set()
            release.wait(5)
            raise RefreshError("denied", status=400)

        store._exchange_refresh_token = failing_exchange
        results = []

        def run():
            try:
                store.refresh()
                results.append(None)
            except RefreshError as e:
                results.append(e)

        first = threading.Thread(target=run)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=run)
        second.start()
        time.sleep(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert len(results) == 2
        assert all(isinstance(r, RefreshError) for r in results)
        assert results[0] is results[1]

    def test_sequential_refreshes_each_exchange(self, store):
        exchange = MagicMock()
        store._exchange_refresh_token = exchange

        store.refresh()
        store.refresh()

        assert exchange.call_count == 2

    def test_interrupted_refresh_does_not_block_later_refreshes(self, store, make_response):
        ok = make_response(
            json_body={"access_token": "00DNEW", "instance_url": "https://na1.salesforce.com"}
        )

        with patch.object(store.session, "request", side_effect=[KeyboardInterrupt, ok]):
            with pytest.raises(KeyboardInterrupt):
                store.refresh()

            th = threading.Thread(target=store.refresh)
            th.start()
            th.join(5)

        assert not th.is_alive()
        assert store.session_token == "00DNEW"
        assert store._pending_refresh is None

    def test_waiters_get_refresh_error_when_owner_interrupted(self, store):
        started = threading.Event()
        release = threading.Event()

        def interrupted_exchange():
            started.set()
            release.wait(5)
            raise KeyboardInterrupt

        store._exchange_refresh_token = interrupted_exchange
        owner_errors, waiter_errors = [], []

        def owner():
            try:
                store.refresh()
            except KeyboardInterrupt as e:
                owner_errors.append(e)

        def waiter():
            try:
                store.refresh()
            except RefreshError as e:
                waiter_errors.append(e)

        first = threading.Thread(target=owner)
        first.start()
        assert started.wait(5)
        second = threading.Thread(target=waiter)
        second.start()
        time.sleep(0.2)
        release.set()
        first.join(5)
        second.join(5)

        assert len(owner_errors) == 1
        assert len(waiter_errors) == 1
        assert isinstance(waiter_errors[0].__cause__, KeyboardInterrupt)
