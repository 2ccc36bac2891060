from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .utils import CANONICALIZATION, HASH_ALGORITHM, stable_hash


class HashableModel(BaseModel):
    schema_version: str = "v1"
    canonicalization: str = CANONICALIZATION
    hash_algorithm: str = HASH_ALGORITHM

    def hash_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def stable_hash(self) -> str:
        return stable_hash(self.hash_payload())


class OracleReport(HashableModel):
    version: str
    verdict: Literal["PASS", "FAIL", "UNAVAILABLE"]
    phase: Optional[str] = None
    failure_atoms: List[str] = Field(default_factory=list)
    duration_ns: int = 0
    log: str = ""


class UpgradeReport(HashableModel):
    package: str
    action: Literal["ALLOW", "BISECT", "LATEST"]
    fallback: bool = False
    previous_version: Optional[str] = None
    version: str
    manifest_changed: bool
    oracle_calls: int
    observations: List[List[str]] = Field(default_factory=list)
    excluded: List[str] = Field(default_factory=list)
    requirements: Dict[str, str] = Field(default_factory=dict)
