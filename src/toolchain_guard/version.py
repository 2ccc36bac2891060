from __future__ import annotations

import re
from dataclasses import dataclass

from .errors import ParseError

_VERSION_RE = re.compile(r"(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)")


@dataclass(frozen=True, order=True)
class SemanticVersion:
    major: int
    minor: int
    patch: int

    def __post_init__(self) -> None:
        for part in (self.major, self.minor, self.patch):
            if isinstance(part, bool) or not isinstance(part, int) or part < 0:
                raise ParseError(f"invalid version component: {part!r}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @classmethod
    def parse(cls, text: str) -> "SemanticVersion":
        return parse(text)

    def bump_minor(self) -> "SemanticVersion":
        return SemanticVersion(self.major, self.minor + 1, 0)


def parse(text: str) -> SemanticVersion:
    if not isinstance(text, str):
        raise ParseError(f"invalid version: {text!r}")
    match = _VERSION_RE.fullmatch(text)
    if match is None:
        raise ParseError(f"invalid version `{text}`: expected MAJOR.MINOR.PATCH")
    major, minor, patch = (int(group) for group in match.groups())
    return SemanticVersion(major, minor, patch)


def compare(a: SemanticVersion, b: SemanticVersion) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def is_downgrade(requested: SemanticVersion, current: SemanticVersion) -> bool:
    return requested < current
