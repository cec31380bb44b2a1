"""Tests for JsonLedgerStore atomic writes, corruption handling and backups."""

import json
from unittest.mock import patch

import pytest

from core.exceptions import CollaboratorUnavailable
from core.ledger import PositionLedger
from infra.state_store import JsonLedgerStore, create_ledger_store_from_config


def test_load_missing_file_returns_none(tmp_path):
    store = JsonLedgerStore(str(tmp_path / "ledger.json"))
    assert store.load() is None


def test_save_then_load(tmp_path):
    store = JsonLedgerStore(str(tmp_path / "ledger.json"))
    store.save({"capital": 0.5, "open_positions": []})
    assert store.load() == {"capital": 0.5, "open_positions": []}
    assert not list(tmp_path.glob(".ledger_*"))


def test_corrupt_file_is_quarantined(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("{not json")
    store = JsonLedgerStore(str(path))

    assert store.load() is None
    assert not path.exists()
    quarantined = list(tmp_path.glob("ledger.json.corrupt-*"))
    assert len(quarantined) == 1
    assert quarantined[0].read_text() == "{not json"


def test_file_without_capital_is_quarantined(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text(json.dumps(["not", "a", "ledger"]))
    store = JsonLedgerStore(str(path))

    assert store.load() is None
    assert list(tmp_path.glob("ledger.json.corrupt-*"))


def test_failed_write_leaves_previous_file_intact(tmp_path):
    path = tmp_path / "ledger.json"
    store = JsonLedgerStore(str(path))
    store.save({"capital": 0.84})

    with patch("infra.state_store.os.replace", side_effect=OSError("disk full")):
        with pytest.raises(CollaboratorUnavailable):
            store.save({"capital": 0.1})

    assert json.loads(path.read_text()) == {"capital": 0.84}
    assert not list(tmp_path.glob(".ledger_*"))


def test_backup_copies_current_file(tmp_path):
    store = JsonLedgerStore(str(tmp_path / "ledger.json"))
    assert store.backup(tmp_path / "backups") is None

    store.save({"capital": 0.84, "halted": True})
    backup = store.backup(tmp_path / "backups", label="before-reset")

    assert backup is not None
    assert "before-reset" in backup.name
    assert json.loads(backup.read_text())["halted"] is True


def test_factory_uses_configured_path(tmp_path):
    store = create_ledger_store_from_config({"path": str(tmp_path / "x" / "state.json")})
    assert store.state_file == tmp_path / "x" / "state.json"
    assert store.state_file.parent.exists()


def test_ledger_starts_fresh_after_corruption(tmp_path):
    path = tmp_path / "ledger.json"
    path.write_text("garbage")
    ledger = PositionLedger.restore(JsonLedgerStore(str(path)), initial_capital=0.84)
    assert ledger.capital == pytest.approx(0.84)
    assert ledger.open_positions() == []
