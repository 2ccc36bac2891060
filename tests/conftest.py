import os
import sys
from pathlib import Path
from typing import Callable, Iterable, List

import pytest

from toolchain_guard.config import Settings
from toolchain_guard.errors import ToolchainUnavailable
from toolchain_guard.toolchain.provider import ToolchainHandle, release_candidates
from toolchain_guard.version import SemanticVersion, parse

FAKE_CARGO = Path(__file__).resolve().parent / "fixtures" / "fake_cargo.py"

SAMPLE_MANIFEST = """\
[package]
name = "filled_in"
version = "0.1.0"
edition = "2021"
rust-version = "1.65.0"  # oldest toolchain known to work

[lib]
crate-type = ["cdylib"]

[dependencies]
clippy_utils = { git = "https://github.com/rust-lang/rust-clippy", tag = "rust-1.65.0" }
dynlint_linting = "^0.9.0"
serde = "1.0"

[dev-dependencies]
dynlint_testing = { version = "0.9.0", path = "../testing" }

[build-dependencies.dynlint_build]
version = "=0.8.1"
features = ["x"]

[target.'cfg(unix)'.dependencies]
dynlint_unix = "0.1"
"""


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    _ = config
    run_slow = os.getenv("RUN_SLOW_TESTS", "") or os.getenv("TOOLCHAIN_GUARD_RUN_SLOW", "")
    if str(run_slow).strip().lower() in {"1", "true", "yes"}:
        return
    skip_slow = pytest.mark.skip(reason="set RUN_SLOW_TESTS=1 to run slow tests")
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


class FakeProvider:
    def __init__(
        self,
        active: str = "1.70.0",
        unavailable: Iterable[str] = (),
        historical: bool = True,
    ) -> None:
        self.active = parse(active)
        self.unavailable = set(unavailable)
        self.supports_historical_installs = historical
        self.installed: List[SemanticVersion] = []

    def ensure_installed(self, version: SemanticVersion) -> ToolchainHandle:
        if str(version) in self.unavailable:
            raise ToolchainUnavailable(version, "not published for this host")
        self.installed.append(version)
        return ToolchainHandle(name=str(version), version=version)

    def current_active(self) -> SemanticVersion:
        return self.active

    def candidates(self, floor: SemanticVersion, ceiling: SemanticVersion) -> List[SemanticVersion]:
        return release_candidates(floor, ceiling)

    def required_environment(self) -> List[str]:
        return ["PATH"]

    def selection_environment(self, handle: ToolchainHandle) -> dict[str, str]:
        return {"RUSTUP_TOOLCHAIN": handle.name}


def fake_cargo(phase: str) -> List[str]:
    return [sys.executable, str(FAKE_CARGO), phase]


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def cargo_command() -> Callable[[str], List[str]]:
    return fake_cargo


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        floor_version="1.60.0",
        internal_version="1.2.3",
        build_command=fake_cargo("build"),
        test_command=fake_cargo("test"),
        lock_path=tmp_path / "locks" / "oracle.lock",
    )


@pytest.fixture
def package(tmp_path: Path) -> Path:
    root = tmp_path / "filled_in"
    root.mkdir()
    (root / "Cargo.toml").write_text(SAMPLE_MANIFEST, encoding="utf-8")
    return root
