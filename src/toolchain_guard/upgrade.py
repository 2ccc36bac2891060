from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from .config import Settings
from .errors import ToolchainGuardError, ToolchainUnavailable, VerificationFailed
from .ledger.ledger import Ledger
from .manifest.manifest import load_manifest, pinned_toolchain
from .manifest.updater import ManifestUpdater
from .oracle.oracle import BuildOracle
from .schemas import UpgradeReport
from .toolchain.provider import ToolchainProvider
from .transition.bisector import Bisector
from .transition.guard import TransitionRequest, check_downgrade, evaluate
from .version import SemanticVersion


def bisection_candidates(
    provider: ToolchainProvider, settings: Settings, package_path: Path
) -> List[SemanticVersion]:
    ceiling = pinned_toolchain(package_path) or provider.current_active()
    return provider.candidates(settings.floor, ceiling)


def verify_version(oracle: BuildOracle, version: SemanticVersion, package_path: Path) -> None:
    outcome = oracle.verify(version, package_path)
    if outcome.unavailable:
        raise ToolchainUnavailable(version, outcome.detail)
    if not outcome.passed:
        raise VerificationFailed(version, outcome)


def upgrade_package(
    package_path: Path,
    request: TransitionRequest,
    *,
    provider: ToolchainProvider,
    settings: Optional[Settings] = None,
    ledger: Optional[Ledger] = None,
    oracle: Optional[BuildOracle] = None,
) -> UpgradeReport:
    settings = settings or Settings()
    ledger = ledger or Ledger.disabled()
    oracle = oracle or BuildOracle(provider, settings, ledger)
    ledger.append(
        "RUN_START",
        {
            "package": package_path,
            "requested_version": str(request.requested_version or ""),
            "allow_downgrade": request.allow_downgrade,
            "use_bisection": request.use_bisection,
        },
    )
    try:
        report = _upgrade(package_path, request, provider, settings, ledger, oracle)
    except ToolchainGuardError as exc:
        ledger.append("RUN_FAILED", {"failure_atom": exc.failure_atom, "message": exc.message})
        raise
    ledger.append("RUN_END", {"version": report.version, "report_hash": report.stable_hash()})
    return report


def _upgrade(
    package_path: Path,
    request: TransitionRequest,
    provider: ToolchainProvider,
    settings: Settings,
    ledger: Ledger,
    oracle: BuildOracle,
) -> UpgradeReport:
    manifest = load_manifest(package_path, settings.internal_dependency_prefix)
    decision = evaluate(
        manifest, request, historical_installs=provider.supports_historical_installs
    )
    ledger.append("GUARD_DECISION", decision.to_json())

    observations: List[List[str]] = []
    excluded: List[str] = []
    if decision.action == "BISECT":
        candidates = bisection_candidates(provider, settings, manifest.package_path)
        result = Bisector(oracle, manifest.package_path, ledger).search(candidates)
        summary = result.to_json()
        target = result.version
        oracle_calls = result.oracle_calls
        observations = summary["observations"]
        excluded = summary["excluded"]
    else:
        if decision.version is not None:
            target = decision.version
        else:
            target = provider.current_active()
            check_downgrade(manifest, target, request.allow_downgrade)
        verify_version(oracle, target, manifest.package_path)
        oracle_calls = 1

    updated = ManifestUpdater(settings, ledger).commit(manifest, target)
    changed = (
        manifest.min_supported_version != updated.min_supported_version
        or manifest.internal_requirements != updated.internal_requirements
    )
    return UpgradeReport(
        package=updated.package_name,
        action=decision.action,
        fallback=decision.fallback,
        previous_version=(
            str(manifest.min_supported_version) if manifest.min_supported_version else None
        ),
        version=str(target),
        manifest_changed=changed,
        oracle_calls=oracle_calls,
        observations=observations,
        excluded=excluded,
        requirements={
            f"{item.table}.{item.name}": item.requirement
            for item in updated.internal_requirements
        },
    )
