from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional

import portalocker

from ..utils import ensure_dir

# Fixed for every build/test subprocess so repeated runs see the same settings.
ORACLE_FIXED_ENV = {
    "CARGO_TERM_COLOR": "never",
    "CARGO_INCREMENTAL": "0",
}


def _env_key(name: str) -> str:
    return name.upper() if os.name == "nt" else name


@contextmanager
def sanitized_environment(
    allowlist: Iterable[str],
    denylist: Iterable[str] = (),
    overrides: Optional[Mapping[str, str]] = None,
) -> Iterator[Dict[str, str]]:
    """Clear ``os.environ`` down to ``allowlist`` for the duration of the block.

    Deny-listed names are removed even when allow-listed. The captured
    environment is restored on every exit path.
    """
    saved = dict(os.environ)
    denied = {_env_key(name) for name in denylist}
    keep = {_env_key(name) for name in allowlist} - denied
    try:
        for name in list(os.environ):
            if _env_key(name) not in keep:
                del os.environ[name]
        if overrides:
            os.environ.update(overrides)
        yield dict(os.environ)
    finally:
        os.environ.clear()
        os.environ.update(saved)


@contextmanager
def oracle_lock(path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock shared by every guard process on this host."""
    ensure_dir(path.parent)
    with open(path, "a", encoding="utf-8") as handle:
        portalocker.lock(handle, portalocker.LOCK_EX)
        try:
            yield
        finally:
            portalocker.unlock(handle)
