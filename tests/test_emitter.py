# tests/test_emitter.py
"""Tests for status-update emission."""

import tempfile
import threading
from pathlib import Path

import pytest

from utilreg.errors import ModuleNotConfigured, NotFound, Unauthorized
from utilreg.events import APP_STATUS_UPDATED
from utilreg.ledger import Ledger

ALICE = "https://utilreg.local/users/alice"
BOB = "https://utilreg.local/users/bob"


@pytest.fixture
def ledger():
    with tempfile.TemporaryDirectory() as tmpdir:
        with Ledger(Path(tmpdir)) as ledger:
            yield ledger


@pytest.fixture
def app_id(ledger):
    return ledger.register_app("ipfs://info1", ALICE)


class TestUpdateAppStatus:
    """Tests for EventEmitter.update_app_status."""

    def test_requires_update_module(self, ledger, app_id):
        events_before = len(ledger.events)
        with pytest.raises(ModuleNotConfigured):
            ledger.update_app_status(app_id, "ipfs://u1", ALICE)
        assert len(ledger.events) == events_before
        assert ledger.status_history(app_id) == []

    def test_succeeds_after_module_set(self, ledger, app_id):
        ledger.set_app_update_module(app_id, "ipfs://mod1", ALICE)
        update = ledger.update_app_status(app_id, "ipfs://u1", ALICE)

        assert update.app_id == app_id
        assert update.update_url == "ipfs://u1"
        assert update.position == 1
        event = ledger.events.list()[-1]
        assert event.event_type == APP_STATUS_UPDATED
        assert event.fields == (app_id, "ipfs://u1")

    def test_clearing_module_blocks_updates_again(self, ledger, app_id):
        ledger.set_app_update_module(app_id, "ipfs://mod1", ALICE)
        ledger.update_app_status(app_id, "ipfs://u1", ALICE)
        ledger.set_app_update_module(app_id, "", ALICE)
        with pytest.raises(ModuleNotConfigured):
            ledger.update_app_status(app_id, "ipfs://u2", ALICE)

    def test_owner_checked_before_module(self, ledger, app_id):
        with pytest.raises(Unauthorized):
            ledger.update_app_status(app_id, "ipfs://u1", BOB)

    def test_unknown_app(self, ledger):
        with pytest.raises(NotFound):
            ledger.update_app_status(9, "ipfs://u1", ALICE)

    def test_update_url_not_interpreted(self, ledger, app_id):
        ledger.set_app_update_module(app_id, "ipfs://mod1", ALICE)
        update = ledger.update_app_status(app_id, "not even a url", ALICE)
        assert update.update_url == "not even a url"

    def test_histories_are_independent(self, ledger, app_id):
        other = ledger.register_app("ipfs://info2", BOB)
        ledger.set_app_update_module(app_id, "ipfs://mod1", ALICE)
        ledger.set_app_update_module(other, "ipfs://mod2", BOB)

        ledger.update_app_status(app_id, "a1", ALICE)
        ledger.update_app_status(other, "b1", BOB)
        ledger.update_app_status(app_id, "a2", ALICE)

        assert [u.update_url for u in ledger.status_history(app_id)] == ["a1", "a2"]
        assert [u.position for u in ledger.status_history(other)] == [1]

    def test_history_of_unknown_app(self, ledger):
        with pytest.raises(NotFound):
            ledger.status_history(3)

    def test_concurrent_updates_are_totally_ordered(self, ledger, app_id):
        ledger.set_app_update_module(app_id, "ipfs://mod1", ALICE)

        def worker(n):
            for i in range(20):
                ledger.update_app_status(app_id, f"ipfs://{n}/{i}", ALICE)

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        history = ledger.status_history(app_id)
        assert [u.position for u in history] == list(range(1, 101))
        sequences = [u.sequence for u in history]
        assert sequences == sorted(sequences)
        # Each worker's own updates keep their issue order
        for n in range(5):
            mine = [u.update_url for u in history if u.update_url.startswith(f"ipfs://{n}/")]
            assert mine == [f"ipfs://{n}/{i}" for i in range(20)]
