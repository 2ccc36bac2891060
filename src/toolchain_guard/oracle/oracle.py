from __future__ import annotations

import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Tuple

from ..config import Settings
from ..errors import ProcessSpawnError, ToolchainUnavailable
from ..ledger.ledger import Ledger
from ..toolchain.provider import ToolchainHandle, ToolchainProvider
from ..utils import hash_bytes
from ..version import SemanticVersion
from .artifacts import stage_plugin_artifacts
from .environment import ORACLE_FIXED_ENV, oracle_lock, sanitized_environment

Phase = Literal["build", "test"]

PASS = "PASS"
FAIL = "FAIL"
UNAVAILABLE = "UNAVAILABLE"

_PHASE_FAILURE_ATOMS = {"build": "BUILD_FAILED", "test": "TESTS_FAILED"}


@dataclass(frozen=True)
class Outcome:
    verdict: str
    phase: Optional[str] = None
    failure_atoms: Tuple[str, ...] = ()
    command: Tuple[str, ...] = ()
    returncode: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    detail: str = ""
    duration_ns: int = 0

    @property
    def passed(self) -> bool:
        return self.verdict == PASS

    @property
    def unavailable(self) -> bool:
        return self.verdict == UNAVAILABLE

    @property
    def log(self) -> str:
        if self.verdict == UNAVAILABLE:
            return f"toolchain unavailable: {self.detail}" if self.detail else "toolchain unavailable"
        if self.verdict == PASS:
            return ""
        lines = [f"$ {' '.join(self.command)}", f"exit status: {self.returncode}"]
        if self.stdout:
            lines.extend(["--- stdout ---", self.stdout.rstrip("\n")])
        if self.stderr:
            lines.extend(["--- stderr ---", self.stderr.rstrip("\n")])
        return "\n".join(lines)

    def to_json(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "phase": self.phase,
            "failure_atoms": list(self.failure_atoms),
            "returncode": self.returncode,
            "stdout_hash": hash_bytes(self.stdout.encode("utf-8")),
            "stderr_hash": hash_bytes(self.stderr.encode("utf-8")),
            "duration_ns": self.duration_ns,
        }


def _failure_atoms(phase: Phase, returncode: int) -> List[str]:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return [f"KILLED:{name}"]
    return [_PHASE_FAILURE_ATOMS[phase]]


class BuildOracle:
    def __init__(
        self,
        provider: ToolchainProvider,
        settings: Optional[Settings] = None,
        ledger: Optional[Ledger] = None,
    ) -> None:
        self.provider = provider
        self.settings = settings or Settings()
        self.ledger = ledger or Ledger.disabled()

    def _allowlist(self) -> List[str]:
        return list(self.settings.env_allowlist) + list(self.provider.required_environment())

    def _command(self, phase: Phase) -> List[str]:
        if phase == "build":
            return list(self.settings.build_command)
        return list(self.settings.test_command)

    def _run_phase(self, handle: ToolchainHandle, package_path: Path, phase: Phase) -> Outcome:
        start = time.time_ns()
        command = self._command(phase)
        overrides = dict(ORACLE_FIXED_ENV)
        overrides.update(self.provider.selection_environment(handle))
        with sanitized_environment(self._allowlist(), self.settings.env_denylist, overrides):
            try:
                proc = subprocess.Popen(
                    command,
                    cwd=package_path,
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except OSError as exc:
                raise ProcessSpawnError(command, exc) from exc
            try:
                stdout, stderr = proc.communicate()
            except BaseException:
                proc.kill()
                proc.wait()
                raise
        duration_ns = time.time_ns() - start
        if proc.returncode == 0:
            return Outcome(
                verdict=PASS,
                phase=phase,
                command=tuple(command),
                returncode=0,
                stdout=stdout,
                stderr=stderr,
                duration_ns=duration_ns,
            )
        return Outcome(
            verdict=FAIL,
            phase=phase,
            failure_atoms=tuple(_failure_atoms(phase, proc.returncode)),
            command=tuple(command),
            returncode=proc.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_ns=duration_ns,
        )

    def _build_then_test(self, handle: ToolchainHandle, package_path: Path) -> Outcome:
        build = self._run_phase(handle, package_path, "build")
        if not build.passed:
            return build
        if self.settings.stage_artifacts:
            stage_plugin_artifacts(package_path / "target", handle)
        test = self._run_phase(handle, package_path, "test")
        if not test.passed:
            return test
        return Outcome(
            verdict=PASS,
            phase="test",
            command=test.command,
            returncode=0,
            stdout=test.stdout,
            stderr=test.stderr,
            duration_ns=build.duration_ns + test.duration_ns,
        )

    def run(self, handle: ToolchainHandle, package_path: Path, phase: Phase) -> Outcome:
        with oracle_lock(self.settings.lock_path):
            return self._run_phase(handle, package_path, phase)

    def verify(self, version: SemanticVersion, package_path: Path) -> Outcome:
        with oracle_lock(self.settings.lock_path):
            try:
                handle = self.provider.ensure_installed(version)
            except ToolchainUnavailable as exc:
                outcome = Outcome(
                    verdict=UNAVAILABLE,
                    failure_atoms=(exc.failure_atom,),
                    detail=exc.detail,
                )
            else:
                outcome = self._build_then_test(handle, package_path)
        self.ledger.append(
            "ORACLE_OUTCOME",
            {"version": str(version), "package": str(package_path), **outcome.to_json()},
        )
        return outcome
