from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..errors import BisectionInconsistent, Unresolvable
from ..ledger.ledger import Ledger
from ..oracle.oracle import FAIL, PASS, BuildOracle, Outcome
from ..version import SemanticVersion


class BisectionRange:
    """Candidate versions with a known-bad index ``lo`` and a known-good index ``hi``.

    ``lo == -1`` means no failure has been seen yet and ``hi == len(versions)``
    means no success has been seen yet; ``lo < hi`` holds throughout.
    Every observation is checked against the earlier ones, assuming that
    compatibility is monotonic in the version.
    """

    def __init__(self, candidates: Iterable[SemanticVersion]) -> None:
        self.versions: List[SemanticVersion] = sorted(set(candidates))
        self.lo = -1
        self.hi = len(self.versions)
        self.observations: List[Tuple[SemanticVersion, str]] = []
        self.excluded: List[SemanticVersion] = []

    @property
    def collapsed(self) -> bool:
        return self.hi - self.lo <= 1

    @property
    def resolved(self) -> bool:
        return self.collapsed and self.hi < len(self.versions)

    @property
    def bounds(self) -> Tuple[Optional[SemanticVersion], Optional[SemanticVersion]]:
        bad = self.versions[self.lo] if self.lo >= 0 else None
        good = self.versions[self.hi] if self.hi < len(self.versions) else None
        return bad, good

    def midpoint(self) -> SemanticVersion:
        if self.collapsed:
            raise ValueError("bisection range already collapsed")
        if self.lo < 0:
            return self.versions[0]
        return self.versions[(self.lo + self.hi) // 2]

    def _check_consistent(self, version: SemanticVersion, verdict: str) -> None:
        for seen, seen_verdict in self.observations:
            if seen == version and seen_verdict != verdict:
                raise BisectionInconsistent((seen, seen_verdict), (version, verdict))
            if verdict == PASS and seen_verdict == FAIL and seen > version:
                raise BisectionInconsistent((seen, seen_verdict), (version, verdict))
            if verdict == FAIL and seen_verdict == PASS and seen < version:
                raise BisectionInconsistent((seen, seen_verdict), (version, verdict))

    def record(self, version: SemanticVersion, verdict: str) -> None:
        if verdict not in (PASS, FAIL):
            raise ValueError(f"cannot narrow on verdict {verdict}")
        self._check_consistent(version, verdict)
        self.observations.append((version, verdict))
        idx = self.versions.index(version)
        if verdict == PASS and idx < self.hi:
            self.hi = idx
        elif verdict == FAIL and idx > self.lo:
            self.lo = idx

    def exclude(self, version: SemanticVersion) -> None:
        idx = self.versions.index(version)
        del self.versions[idx]
        self.excluded.append(version)
        if idx < self.lo:
            self.lo -= 1
        if idx < self.hi:
            self.hi -= 1

    def result(self) -> SemanticVersion:
        if not self.resolved:
            raise Unresolvable("no compatible version found")
        return self.versions[self.hi]


@dataclass
class BisectionResult:
    version: SemanticVersion
    oracle_calls: int
    observations: List[Tuple[SemanticVersion, str]] = field(default_factory=list)
    excluded: List[SemanticVersion] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "version": str(self.version),
            "oracle_calls": self.oracle_calls,
            "observations": [[str(version), verdict] for version, verdict in self.observations],
            "excluded": [str(version) for version in self.excluded],
        }


class Bisector:
    def __init__(
        self, oracle: BuildOracle, package_path: Path, ledger: Optional[Ledger] = None
    ) -> None:
        self.oracle = oracle
        self.package_path = package_path
        self.ledger = ledger or Ledger.disabled()

    def search(
        self,
        candidates: Iterable[SemanticVersion],
        known: Iterable[Tuple[SemanticVersion, str]] = (),
    ) -> BisectionResult:
        """Find the oldest candidate that builds and tests.

        ``known`` holds verdicts from an earlier, interrupted search and seeds
        the range; verdicts that contradict each other raise
        ``BisectionInconsistent``. Fresh probes always fall strictly between the
        known-bad and known-good bounds, so they cannot contradict the range.
        """
        search = BisectionRange(candidates)
        if not search.versions:
            raise Unresolvable("no candidate toolchain versions to bisect")
        for version, verdict in known:
            if version in search.versions:
                search.record(version, verdict)
        ceiling = search.versions[-1]
        failures: Dict[SemanticVersion, Outcome] = {}
        calls = 0
        while not search.collapsed:
            version = search.midpoint()
            outcome = self.oracle.verify(version, self.package_path)
            calls += 1
            self.ledger.append(
                "BISECTION_STEP",
                {"version": str(version), "verdict": outcome.verdict, "lo": search.lo, "hi": search.hi},
            )
            if outcome.unavailable:
                search.exclude(version)
                continue
            if not outcome.passed:
                failures[version] = outcome
            search.record(version, outcome.verdict)

        if not search.versions:
            excluded = ", ".join(str(version) for version in search.excluded)
            raise Unresolvable(f"no candidate toolchain could be installed ({excluded})")
        if not search.resolved:
            highest = search.versions[-1]
            raise Unresolvable(
                f"the newest available candidate {highest} does not build and test"
                + (f" (ceiling {ceiling} was unavailable)" if highest != ceiling else ""),
                outcome=failures.get(highest),
            )
        return BisectionResult(
            version=search.result(),
            oracle_calls=calls,
            observations=list(search.observations),
            excluded=list(search.excluded),
        )
