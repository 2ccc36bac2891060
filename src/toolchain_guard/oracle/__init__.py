from .artifacts import find_ambiguous_artifacts, stage_plugin_artifacts
from .environment import oracle_lock, sanitized_environment
from .oracle import FAIL, PASS, UNAVAILABLE, BuildOracle, Outcome

__all__ = [
    "find_ambiguous_artifacts",
    "stage_plugin_artifacts",
    "oracle_lock",
    "sanitized_environment",
    "FAIL",
    "PASS",
    "UNAVAILABLE",
    "BuildOracle",
    "Outcome",
]
