from pathlib import Path

import orjson
import pytest

from toolchain_guard.config import Settings
from toolchain_guard.errors import LedgerError
from toolchain_guard.ledger.ledger import Ledger
from toolchain_guard.utils import stable_hash


def test_ledger_chain_verification(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger = Ledger(ledger_path)
    ledger.append("RUN_START", {"package": tmp_path})
    ledger.append("RUN_END", {"version": "1.65.0"})
    ok, _ = Ledger.verify_chain(ledger_path)
    assert ok

    lines = ledger_path.read_text(encoding="utf-8").splitlines()
    entry = orjson.loads(lines[0])
    entry["payload"]["package"] = "elsewhere"
    lines[0] = orjson.dumps(entry, option=orjson.OPT_SORT_KEYS).decode("utf-8")
    ledger_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    ok, reason = Ledger.verify_chain(ledger_path)
    assert not ok
    assert reason == "hash mismatch at 0"


def test_reopened_ledger_continues_chain(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    first = Ledger(ledger_path).append("RUN_START", {})
    Ledger(ledger_path).append("RUN_END", {})
    second = orjson.loads(ledger_path.read_bytes().splitlines()[1])
    assert second["prev_hash"] == first
    assert Ledger.verify_chain(ledger_path) == (True, "ok")


def test_disabled_ledger_writes_nothing(tmp_path: Path) -> None:
    ledger = Ledger.disabled()
    ledger.append("RUN_START", {"a": 1})
    assert ledger.events() == []
    assert list(tmp_path.iterdir()) == []


def test_ledger_location_follows_settings(tmp_path: Path) -> None:
    package = tmp_path / "pkg"
    assert Settings().ledger_for(package) == package / "target" / "toolchain-guard" / "ledger.jsonl"
    assert Settings(ledger_path=tmp_path / "l.jsonl").ledger_for(package) == tmp_path / "l.jsonl"
    assert Settings(ledger_enabled=False).ledger_for(package) is None


def test_canonical_hash_stability() -> None:
    payload = {"b": [2, 3], "a": 1}
    assert stable_hash(payload) == stable_hash({"a": 1, "b": [2, 3]})


def test_truncated_tail_is_dropped_on_open(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    first = Ledger(ledger_path).append("RUN_START", {})
    with ledger_path.open("ab") as handle:
        handle.write(b'{"hash":"ab","payload":{"x":1')
    ledger = Ledger(ledger_path)
    assert ledger_path.read_bytes().endswith(b"\n")
    ledger.append("RUN_END", {})
    entries = ledger.events()
    assert [entry["type"] for entry in entries] == ["RUN_START", "RUN_END"]
    assert entries[1]["prev_hash"] == first
    assert Ledger.verify_chain(ledger_path) == (True, "ok")


def test_corrupt_entry_is_a_ledger_error(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    ledger_path.write_bytes(b'{"hash":\n{"type":"RUN_END"}\n')
    with pytest.raises(LedgerError, match="could not read ledger"):
        Ledger(ledger_path)
    ok, reason = Ledger.verify_chain(ledger_path)
    assert not ok
    assert reason.startswith("undecodable entry")
