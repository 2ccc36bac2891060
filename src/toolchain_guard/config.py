from __future__ import annotations

import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from . import __version__
from .version import SemanticVersion, parse

DEFAULT_ENV_ALLOWLIST = [
    "PATH",
    "HOME",
    "USER",
    "LOGNAME",
    "LANG",
    "TMPDIR",
    "TEMP",
    "TMP",
    "RUSTUP_HOME",
    "CARGO_HOME",
    "SYSTEMROOT",
    "USERPROFILE",
    "APPDATA",
    "LOCALAPPDATA",
]

# Plugin search paths and extra compiler flags force rebuilds or change outcomes.
DEFAULT_ENV_DENYLIST = [
    "DYNLINT_LIBRARY_PATH",
    "DYNLINT_DRIVER_PATH",
    "DYNLINT_RUSTFLAGS",
    "RUSTFLAGS",
    "CARGO_ENCODED_RUSTFLAGS",
    "RUSTDOCFLAGS",
    "CARGO_ENCODED_RUSTDOCFLAGS",
    "RUSTC_WRAPPER",
    "RUSTC_WORKSPACE_WRAPPER",
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="TOOLCHAIN_GUARD_")

    floor_version: str = "1.56.0"
    internal_dependency_prefix: str = "dynlint"
    internal_version: str = __version__
    build_command: List[str] = Field(
        default_factory=lambda: ["cargo", "build", "--all-targets"]
    )
    test_command: List[str] = Field(default_factory=lambda: ["cargo", "test"])
    env_allowlist: List[str] = Field(default_factory=lambda: list(DEFAULT_ENV_ALLOWLIST))
    env_denylist: List[str] = Field(default_factory=lambda: list(DEFAULT_ENV_DENYLIST))
    lock_path: Path = Field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "toolchain-guard" / "oracle.lock"
    )
    ledger_enabled: bool = True
    ledger_path: Optional[Path] = None
    stage_artifacts: bool = True

    @field_validator("floor_version", "internal_version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        parse(value)
        return value

    @property
    def floor(self) -> SemanticVersion:
        return parse(self.floor_version)

    def ledger_for(self, package_path: Path) -> Optional[Path]:
        if not self.ledger_enabled:
            return None
        if self.ledger_path is not None:
            return self.ledger_path
        return package_path / "target" / "toolchain-guard" / "ledger.jsonl"
