from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from ..errors import DowngradeRefused
from ..manifest.manifest import PackageManifest
from ..version import SemanticVersion, is_downgrade

Action = Literal["ALLOW", "BISECT", "LATEST"]


@dataclass(frozen=True)
class TransitionRequest:
    requested_version: Optional[SemanticVersion] = None
    allow_downgrade: bool = False
    use_bisection: bool = False


@dataclass(frozen=True)
class GuardDecision:
    action: Action
    version: Optional[SemanticVersion] = None
    fallback: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "version": str(self.version) if self.version else None,
            "fallback": self.fallback,
        }


def check_downgrade(
    manifest: PackageManifest, target: SemanticVersion, allow_downgrade: bool
) -> None:
    current = manifest.min_supported_version
    if current is None or allow_downgrade:
        return
    if is_downgrade(target, current):
        raise DowngradeRefused(current, target)


def evaluate(
    manifest: PackageManifest,
    request: TransitionRequest,
    *,
    historical_installs: bool = True,
) -> GuardDecision:
    if request.requested_version is not None:
        check_downgrade(manifest, request.requested_version, request.allow_downgrade)
        return GuardDecision(action="ALLOW", version=request.requested_version)
    if request.use_bisection:
        if historical_installs:
            return GuardDecision(action="BISECT")
        return GuardDecision(action="LATEST", fallback=True)
    return GuardDecision(action="LATEST")
