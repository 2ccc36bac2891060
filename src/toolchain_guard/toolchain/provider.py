from __future__ import annotations

import os
import re
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Protocol

from ..errors import ParseError, ProcessSpawnError, ToolchainUnavailable
from ..version import SemanticVersion, parse

_RUSTC_VERSION_RE = re.compile(r"^rustc ([0-9]+\.[0-9]+\.[0-9]+)")


@dataclass(frozen=True)
class ToolchainHandle:
    name: str
    version: SemanticVersion


class ToolchainProvider(Protocol):
    supports_historical_installs: bool

    def ensure_installed(self, version: SemanticVersion) -> ToolchainHandle:
        ...

    def current_active(self) -> SemanticVersion:
        ...

    def candidates(
        self, floor: SemanticVersion, ceiling: SemanticVersion
    ) -> List[SemanticVersion]:
        ...

    def required_environment(self) -> List[str]:
        ...

    def selection_environment(self, handle: ToolchainHandle) -> Dict[str, str]:
        ...


def release_candidates(floor: SemanticVersion, ceiling: SemanticVersion) -> List[SemanticVersion]:
    if ceiling < floor:
        return []
    if floor.major != ceiling.major:
        return [floor, ceiling]
    versions = [floor]
    current = floor.bump_minor()
    while current < ceiling:
        versions.append(current)
        current = current.bump_minor()
    if ceiling != floor:
        versions.append(ceiling)
    return versions


def _provider_env() -> dict[str, str]:
    # RUSTUP_TOOLCHAIN would override the toolchain named on the command line.
    env = os.environ.copy()
    env.pop("RUSTUP_TOOLCHAIN", None)
    return env


class RustupProvider:
    supports_historical_installs = True

    def __init__(self, rustup: str = "rustup", rustc: str = "rustc") -> None:
        self.rustup = rustup
        self.rustc = rustc

    def _run(self, command: List[str]) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                command,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=_provider_env(),
            )
        except OSError as exc:
            raise ProcessSpawnError(command, exc) from exc

    def ensure_installed(self, version: SemanticVersion) -> ToolchainHandle:
        name = str(version)
        proc = self._run(
            [self.rustup, "toolchain", "install", name, "--profile", "minimal", "--no-self-update"]
        )
        if proc.returncode != 0:
            detail = (proc.stderr or proc.stdout).strip().splitlines()
            raise ToolchainUnavailable(version, detail[-1] if detail else "")
        return ToolchainHandle(name=name, version=version)

    def current_active(self) -> SemanticVersion:
        proc = self._run([self.rustc, "--version"])
        if proc.returncode != 0:
            raise ParseError(f"`{self.rustc} --version` exited with {proc.returncode}")
        match = _RUSTC_VERSION_RE.match(proc.stdout.strip())
        if match is None:
            raise ParseError(f"unrecognized rustc version output: {proc.stdout.strip()!r}")
        return parse(match.group(1))

    def candidates(
        self, floor: SemanticVersion, ceiling: SemanticVersion
    ) -> List[SemanticVersion]:
        return release_candidates(floor, ceiling)

    def required_environment(self) -> List[str]:
        return ["PATH", "HOME", "RUSTUP_HOME", "CARGO_HOME"]

    def selection_environment(self, handle: ToolchainHandle) -> Dict[str, str]:
        return {"RUSTUP_TOOLCHAIN": handle.name}
