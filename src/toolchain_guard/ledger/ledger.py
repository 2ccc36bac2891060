from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import orjson

from ..errors import LedgerError
from ..utils import now_ts_ns, read_jsonl, stable_hash, to_jsonable, write_jsonl_line


def _drop_partial_tail(path: Path) -> None:
    # An append interrupted mid-line leaves bytes after the last newline.
    data = path.read_bytes()
    if not data or data.endswith(b"\n"):
        return
    with path.open("r+b") as handle:
        handle.truncate(data.rfind(b"\n") + 1)


class Ledger:
    """Append-only, hash-chained record of one package's guard runs.

    A ledger without a path records nothing; callers never need to branch on
    whether the ledger is enabled.
    """

    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self._last_hash = ""
        if path is not None and path.exists():
            try:
                _drop_partial_tail(path)
                entries = read_jsonl(path)
            except (OSError, orjson.JSONDecodeError) as exc:
                raise LedgerError(f"could not read ledger `{path}`: {exc}") from exc
            if entries:
                self._last_hash = entries[-1].get("hash", "")

    @classmethod
    def disabled(cls) -> "Ledger":
        return cls(None)

    def append(self, event_type: str, payload: Dict[str, Any]) -> str:
        event = {
            "ts": now_ts_ns(),
            "type": event_type,
            "payload": to_jsonable(payload),
            "prev_hash": self._last_hash,
        }
        event_hash = stable_hash(event)
        event["hash"] = event_hash
        if self.path is not None:
            write_jsonl_line(self.path, event)
        self._last_hash = event_hash
        return event_hash

    def events(self, event_type: Optional[str] = None) -> List[Dict[str, Any]]:
        if self.path is None:
            return []
        entries = read_jsonl(self.path)
        if event_type is None:
            return entries
        return [entry for entry in entries if entry.get("type") == event_type]

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        try:
            entries = read_jsonl(path)
        except orjson.JSONDecodeError as exc:
            return False, f"undecodable entry: {exc}"
        prev_hash = ""
        for idx, entry in enumerate(entries):
            expected_hash = entry.get("hash", "")
            recomputed = stable_hash(
                {
                    "ts": entry.get("ts"),
                    "type": entry.get("type"),
                    "payload": entry.get("payload"),
                    "prev_hash": entry.get("prev_hash"),
                }
            )
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if recomputed != expected_hash:
                return False, f"hash mismatch at {idx}"
            prev_hash = expected_hash
        return True, "ok"
