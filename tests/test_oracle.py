import json
import os
from pathlib import Path

import portalocker
import pytest

from toolchain_guard.config import Settings
from toolchain_guard.errors import ProcessSpawnError
from toolchain_guard.ledger.ledger import Ledger
from toolchain_guard.oracle.environment import oracle_lock, sanitized_environment
from toolchain_guard.oracle.oracle import FAIL, PASS, UNAVAILABLE, BuildOracle
from toolchain_guard.toolchain.provider import ToolchainHandle
from toolchain_guard.version import parse

HANDLE = ToolchainHandle(name="1.70.0", version=parse("1.70.0"))


def test_build_then_test_pass(package: Path, settings: Settings, make_provider) -> None:
    provider = make_provider()
    outcome = BuildOracle(provider, settings).verify(parse("1.70.0"), package)
    assert outcome.verdict == PASS
    assert outcome.passed
    assert outcome.log == ""
    assert (package / "ran-build").exists()
    assert (package / "ran-test").exists()
    assert provider.installed == [parse("1.70.0")]


def test_test_phase_skipped_when_build_fails(
    package: Path, settings: Settings, make_provider
) -> None:
    (package / "fail-build").write_text("", encoding="utf-8")
    outcome = BuildOracle(make_provider(), settings).verify(parse("1.70.0"), package)
    assert outcome.verdict == FAIL
    assert outcome.phase == "build"
    assert outcome.failure_atoms == ("BUILD_FAILED",)
    assert outcome.returncode == 101
    assert outcome.stderr == "error: build failed under 1.70.0\n"
    assert "error: build failed under 1.70.0" in outcome.log
    assert not (package / "ran-test").exists()


def test_test_failure_is_reported(package: Path, settings: Settings, make_provider) -> None:
    (package / "fail-test").write_text("", encoding="utf-8")
    outcome = BuildOracle(make_provider(), settings).verify(parse("1.70.0"), package)
    assert outcome.verdict == FAIL
    assert outcome.phase == "test"
    assert outcome.failure_atoms == ("TESTS_FAILED",)


def test_toolchain_gate_fails_older_versions(
    package: Path, settings: Settings, make_provider
) -> None:
    (package / "min-toolchain.txt").write_text("1.63.0\n", encoding="utf-8")
    oracle = BuildOracle(make_provider(), settings)
    old = oracle.verify(parse("1.62.0"), package)
    assert old.verdict == FAIL
    assert "needs rustc 1.63.0, found 1.62.0" in old.stderr
    assert oracle.verify(parse("1.63.0"), package).verdict == PASS


def test_unavailable_toolchain(package: Path, settings: Settings, make_provider) -> None:
    provider = make_provider(unavailable=["1.61.0"])
    outcome = BuildOracle(provider, settings).verify(parse("1.61.0"), package)
    assert outcome.verdict == UNAVAILABLE
    assert outcome.unavailable
    assert outcome.failure_atoms == ("TOOLCHAIN_UNAVAILABLE",)
    assert "not published" in outcome.log
    assert not (package / "ran-build").exists()


@pytest.mark.parametrize("phase", ["env", "env-fail"])
def test_unlisted_variable_hidden_and_restored(
    package: Path,
    settings: Settings,
    make_provider,
    cargo_command,
    monkeypatch: pytest.MonkeyPatch,
    phase: str,
) -> None:
    monkeypatch.setenv("GUARD_AMBIENT_PROBE", "ambient")
    monkeypatch.setenv("RUSTUP_TOOLCHAIN", "stable")
    settings = settings.model_copy(update={"build_command": cargo_command(phase)})
    outcome = BuildOracle(make_provider(), settings).run(HANDLE, package, "build")

    seen = json.loads(outcome.stdout)
    assert "GUARD_AMBIENT_PROBE" not in seen
    assert seen["RUSTUP_TOOLCHAIN"] == "1.70.0"
    assert seen["CARGO_TERM_COLOR"] == "never"
    assert outcome.verdict == (PASS if phase == "env" else FAIL)
    assert os.environ["GUARD_AMBIENT_PROBE"] == "ambient"
    assert os.environ["RUSTUP_TOOLCHAIN"] == "stable"


def test_denylist_beats_allowlist(
    package: Path,
    settings: Settings,
    make_provider,
    cargo_command,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("RUSTFLAGS", "-C target-cpu=native")
    monkeypatch.setenv("DYNLINT_LIBRARY_PATH", "/tmp/plugins")
    monkeypatch.setenv("RUSTUP_HOME", "/opt/rustup")
    settings = settings.model_copy(
        update={
            "build_command": cargo_command("env"),
            "env_allowlist": settings.env_allowlist + ["RUSTFLAGS", "DYNLINT_LIBRARY_PATH"],
        }
    )
    outcome = BuildOracle(make_provider(), settings).run(HANDLE, package, "build")
    seen = json.loads(outcome.stdout)
    assert "RUSTFLAGS" not in seen
    assert "DYNLINT_LIBRARY_PATH" not in seen
    assert seen["RUSTUP_HOME"] == "/opt/rustup"
    assert os.environ["RUSTFLAGS"] == "-C target-cpu=native"
    assert os.environ["DYNLINT_LIBRARY_PATH"] == "/tmp/plugins"


def test_spawn_error_restores_environment(
    package: Path,
    settings: Settings,
    make_provider,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("GUARD_AMBIENT_PROBE", "ambient")
    before = dict(os.environ)
    settings = settings.model_copy(
        update={"build_command": [str(tmp_path / "no-such-cargo"), "build"]}
    )
    with pytest.raises(ProcessSpawnError) as excinfo:
        BuildOracle(make_provider(), settings).verify(parse("1.70.0"), package)
    assert excinfo.value.failure_atom == "PROCESS_SPAWN_ERROR"
    assert dict(os.environ) == before


def test_sanitized_environment_restores_after_exception(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("GUARD_AMBIENT_PROBE", "ambient")
    monkeypatch.delenv("GUARD_ADDED_PROBE", raising=False)
    before = dict(os.environ)
    with pytest.raises(RuntimeError):
        with sanitized_environment(["PATH"], overrides={"GUARD_ADDED_PROBE": "1"}) as env:
            assert "GUARD_AMBIENT_PROBE" not in os.environ
            assert env["GUARD_ADDED_PROBE"] == "1"
            raise RuntimeError("boom")
    assert dict(os.environ) == before


def test_oracle_lock_excludes_other_holders(tmp_path: Path) -> None:
    lock_path = tmp_path / "locks" / "oracle.lock"
    with oracle_lock(lock_path):
        with open(lock_path, "a", encoding="utf-8") as other:
            with pytest.raises(portalocker.exceptions.LockException):
                portalocker.lock(other, portalocker.LOCK_EX | portalocker.LOCK_NB)
    with open(lock_path, "a", encoding="utf-8") as other:
        portalocker.lock(other, portalocker.LOCK_EX | portalocker.LOCK_NB)
        portalocker.unlock(other)


def test_outcome_is_recorded_in_ledger(
    package: Path, settings: Settings, make_provider, tmp_path: Path
) -> None:
    ledger = Ledger(tmp_path / "ledger.jsonl")
    BuildOracle(make_provider(), settings, ledger).verify(parse("1.70.0"), package)
    (event,) = ledger.events("ORACLE_OUTCOME")
    assert event["payload"]["version"] == "1.70.0"
    assert event["payload"]["verdict"] == PASS
    assert "stdout" not in event["payload"]
