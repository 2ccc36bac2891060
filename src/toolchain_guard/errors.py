from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Tuple

if TYPE_CHECKING:
    from .oracle.oracle import Outcome
    from .version import SemanticVersion


class ToolchainGuardError(Exception):
    failure_atom = "ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseError(ToolchainGuardError, ValueError):
    failure_atom = "PARSE_ERROR"


class ToolchainUnavailable(ToolchainGuardError):
    failure_atom = "TOOLCHAIN_UNAVAILABLE"

    def __init__(self, version: "SemanticVersion", detail: str = "") -> None:
        message = f"Toolchain {version} is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.version = version
        self.detail = detail


class ProcessSpawnError(ToolchainGuardError):
    failure_atom = "PROCESS_SPAWN_ERROR"

    def __init__(self, command: list[str], exc: OSError) -> None:
        super().__init__(f"Could not spawn `{' '.join(command)}`: {exc}")
        self.command = list(command)


class DowngradeRefused(ToolchainGuardError):
    failure_atom = "DOWNGRADE_REFUSED"

    def __init__(self, current: "SemanticVersion", requested: "SemanticVersion") -> None:
        super().__init__(
            f"Refusing to downgrade toolchain from {current} to {requested}; "
            "pass --allow-downgrade to override"
        )
        self.current = current
        self.requested = requested


class BisectionInconsistent(ToolchainGuardError):
    failure_atom = "BISECTION_INCONSISTENT"

    def __init__(
        self,
        first: Tuple["SemanticVersion", str],
        second: Tuple["SemanticVersion", str],
    ) -> None:
        super().__init__(
            "Bisection observed non-monotonic results: "
            f"{first[0]} -> {first[1]}, then {second[0]} -> {second[1]}"
        )
        self.first = first
        self.second = second


class Unresolvable(ToolchainGuardError):
    failure_atom = "UNRESOLVABLE"

    def __init__(self, message: str, outcome: Optional["Outcome"] = None) -> None:
        if outcome is not None and outcome.log:
            message = f"{message}\n\n{outcome.log}"
        super().__init__(message)
        self.outcome = outcome


class VerificationFailed(ToolchainGuardError):
    def __init__(self, version: "SemanticVersion", outcome: "Outcome") -> None:
        phase = outcome.phase or "build"
        message = f"Toolchain {version} failed the {phase} phase"
        if outcome.log:
            message = f"{message}\n\n{outcome.log}"
        super().__init__(message)
        self.version = version
        self.outcome = outcome
        self.failure_atom = outcome.failure_atoms[0] if outcome.failure_atoms else "FAILED"


class ManifestError(ToolchainGuardError):
    failure_atom = "MANIFEST_INVALID"


class ManifestWriteError(ToolchainGuardError):
    failure_atom = "MANIFEST_WRITE_ERROR"


class AmbiguousArtifact(ToolchainGuardError):
    failure_atom = "AMBIGUOUS_ARTIFACT"

    def __init__(self, name: str, candidates: list[str]) -> None:
        super().__init__(
            f"Plugin `{name}` has {len(candidates)} candidate libraries: " + ", ".join(candidates)
        )
        self.name = name
        self.candidates = candidates


class LedgerError(ToolchainGuardError):
    failure_atom = "LEDGER_UNREADABLE"
