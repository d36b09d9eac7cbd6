# tests/test_server.py
"""Tests for the HTTP server and client SDK."""

import json
import tempfile
from pathlib import Path
from urllib.error import HTTPError
from urllib.request import Request, urlopen

import pytest

from utilreg.client import ClientError, RegistryClient
from utilreg.errors import LedgerLocked, ModuleNotConfigured, NotFound, Unauthorized
from utilreg.identity import Actor, sign_request
from utilreg.ledger import Ledger
from utilreg.server import RegistryServer, RequestError


@pytest.fixture(scope="module")
def alice():
    return Actor.create("alice")


@pytest.fixture(scope="module")
def bob():
    return Actor.create("bob")


@pytest.fixture
def server():
    with tempfile.TemporaryDirectory() as tmpdir:
        srv = RegistryServer(Path(tmpdir), port=0)
        srv.start_background()
        try:
            yield srv
        finally:
            srv.stop()


@pytest.fixture
def base_url(server):
    return f"http://127.0.0.1:{server.port}"


@pytest.fixture
def alice_client(base_url, alice):
    client = RegistryClient(base_url, actor=alice)
    client.register_actor(alice)
    return client


@pytest.fixture
def bob_client(base_url, bob):
    client = RegistryClient(base_url, actor=bob)
    client.register_actor(bob)
    return client


def raw_request(url: str, method: str, data: dict = None, headers: dict = None):
    body = json.dumps(data).encode() if data is not None else None
    req = Request(url, data=body, headers=headers or {}, method=method)
    try:
        with urlopen(req, timeout=10) as response:
            return response.status, json.loads(response.read().decode())
    except HTTPError as e:
        return e.code, json.loads(e.read().decode())


class TestServerAPI:
    """End-to-end tests through the signed client."""

    def test_health(self, base_url):
        assert RegistryClient(base_url).health()

    def test_full_lifecycle(self, alice_client, alice):
        app_id = alice_client.register_app("ipfs://info1")
        assert app_id == 1

        added = alice_client.register_collections(app_id, [(1, "0xC1"), (1, "0xC1")])
        assert [c["address"] for c in added] == ["0xc1"]

        with pytest.raises(ModuleNotConfigured):
            alice_client.update_app_status(app_id, "ipfs://u1")

        alice_client.set_app_update_module(app_id, "ipfs://mod1")
        update = alice_client.update_app_status(app_id, "ipfs://u1")
        assert update["position"] == 1

        app = alice_client.get_app(app_id)
        assert app["owner"] == alice.id
        assert app["update_module_locator"] == "ipfs://mod1"
        assert [u["update_url"] for u in alice_client.status_history(app_id)] == ["ipfs://u1"]

        kinds = [e["event_type"] for e in alice_client.events()]
        assert kinds == ["AppRegistered", "CollectionRegistered", "UpdateModuleSet", "AppStatusUpdated"]
        assert len(alice_client.events(since=2)) == 2

    def test_non_owner_forbidden(self, alice_client, bob_client):
        app_id = alice_client.register_app("ipfs://info1")
        with pytest.raises(Unauthorized):
            bob_client.change_app_info(app_id, "ipfs://hijack")
        assert alice_client.get_app(app_id)["info_locator"] == "ipfs://info1"

    def test_transfer_owner(self, alice_client, bob_client, bob):
        app_id = alice_client.register_app("ipfs://info1")
        alice_client.transfer_app_owner(app_id, bob.id)

        with pytest.raises(Unauthorized):
            alice_client.change_app_info(app_id, "ipfs://x")
        assert bob_client.change_app_info(app_id, "ipfs://y")["info_locator"] == "ipfs://y"

    def test_unknown_app(self, alice_client):
        with pytest.raises(NotFound):
            alice_client.get_app(99)
        with pytest.raises(NotFound):
            alice_client.set_app_update_module(99, "ipfs://m")

    def test_list_apps(self, alice_client, bob_client):
        alice_client.register_app("ipfs://a")
        bob_client.register_app("ipfs://b")
        assert [a["app_id"] for a in alice_client.list_apps()] == [1, 2]

    def test_duplicate_actor(self, alice_client, alice):
        with pytest.raises(ClientError) as exc:
            alice_client.register_actor(alice)
        assert exc.value.status == 409


class TestServerAuthentication:
    """Requests without valid signatures."""

    def test_unsigned_mutation_rejected(self, base_url, alice_client, alice):
        status, body = raw_request(
            f"{base_url}/apps", "POST", {"info_locator": "ipfs://a"}, {"X-Actor": alice.id},
        )
        assert status == 401
        assert body["code"] == "unauthenticated"

    def test_unknown_actor_rejected(self, base_url):
        stranger = RegistryClient(base_url, actor=Actor.create("stranger"))
        with pytest.raises(ClientError) as exc:
            stranger.register_app("ipfs://a")
        assert exc.value.status == 401

    def test_replayed_request_rejected(self, base_url, alice_client, alice):
        data = {"info_locator": "ipfs://a"}
        headers = sign_request(alice, "POST", "/apps", json.dumps(data).encode())

        status, body = raw_request(f"{base_url}/apps", "POST", data, headers)
        assert (status, body) == (201, {"app_id": 1})

        status, body = raw_request(f"{base_url}/apps", "POST", data, headers)
        assert status == 401
        assert len(alice_client.list_apps()) == 1

    def test_identical_calls_are_both_accepted(self, alice_client):
        assert alice_client.register_app("ipfs://same") == 1
        assert alice_client.register_app("ipfs://same") == 2

    def test_reads_need_no_identity(self, base_url, alice_client):
        alice_client.register_app("ipfs://a")
        status, body = raw_request(f"{base_url}/apps/1", "GET")
        assert status == 200
        assert body["info_locator"] == "ipfs://a"


class TestServerRequests:
    """Malformed requests and the parallel-array form."""

    def test_invalid_json(self, base_url):
        req = Request(f"{base_url}/apps", data=b"{not json", method="POST")
        with pytest.raises(HTTPError) as exc:
            urlopen(req, timeout=10)
        assert exc.value.code == 400

    def test_unknown_route(self, base_url):
        status, body = raw_request(f"{base_url}/nope", "GET")
        assert status == 404

    def test_insecure_mode_trusts_header(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            srv = RegistryServer(Path(tmpdir), port=0, require_signatures=False)
            srv.start_background()
            try:
                url = f"http://127.0.0.1:{srv.port}"
                headers = {"X-Actor": "owner-1", "Content-Type": "application/json"}
                status, body = raw_request(f"{url}/apps", "POST", {"info_locator": "x"}, headers)
                assert status == 201

                status, body = raw_request(
                    f"{url}/apps/1/collections", "POST",
                    {"chain_ids": [1, 2], "addresses": ["0xc1"]}, headers,
                )
                assert status == 400
                assert body["code"] == "argument_mismatch"

                status, body = raw_request(
                    f"{url}/apps/1/collections", "POST",
                    {"chain_ids": [1, 2], "addresses": ["0xc1", "0xc2"]}, headers,
                )
                assert status == 200
                assert len(body["registered"]) == 2

                status, body = raw_request(
                    f"{url}/apps/1/status", "POST", {"update_url": "u"}, headers,
                )
                assert status == 409
                assert body["code"] == "module_not_configured"
            finally:
                srv.stop()


class TestHandle:
    """Dispatch without a socket."""

    def test_missing_field(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            srv = RegistryServer(Path(tmpdir))
            with pytest.raises(RequestError) as exc:
                srv.handle("POST", "/apps", "owner-1", {})
            assert exc.value.status == 400
            srv.stop()

    def test_register_via_handle(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            srv = RegistryServer(Path(tmpdir))
            status, body = srv.handle("POST", "/apps", "owner-1", {"info_locator": "x"})
            assert (status, body) == (201, {"app_id": 1})
            status, body = srv.handle("GET", "/events?app_id=1", None, {})
            assert [e["event_type"] for e in body["events"]] == ["AppRegistered"]
            srv.stop()

    def test_server_holds_data_directory(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            srv = RegistryServer(Path(tmpdir))
            with pytest.raises(LedgerLocked):
                Ledger(Path(tmpdir))
            srv.stop()
            with Ledger(Path(tmpdir)) as ledger:
                assert ledger.list_apps() == []
