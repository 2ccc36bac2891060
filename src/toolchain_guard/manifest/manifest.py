from __future__ import annotations

import re
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..errors import ManifestError, ParseError
from ..version import SemanticVersion, parse

MANIFEST_NAME = "Cargo.toml"
TOOLCHAIN_FILES = ("rust-toolchain.toml", "rust-toolchain")
DEPENDENCY_TABLES = ("dependencies", "dev-dependencies", "build-dependencies")

_CLIPPY_UTILS_TAG_RE = re.compile(r'^clippy_utils = .*\btag = "rust-([^"]*)"')
# Cargo accepts `MAJOR.MINOR` here and reads it as `MAJOR.MINOR.0`.
_RUST_VERSION_RE = re.compile(r"(0|[1-9][0-9]*)\.(0|[1-9][0-9]*)(?:\.(0|[1-9][0-9]*))?")


@dataclass(frozen=True)
class InternalRequirement:
    table: str
    name: str
    requirement: str


@dataclass(frozen=True)
class PackageManifest:
    path: Path
    package_name: str
    package_version: str
    min_supported_version: Optional[SemanticVersion]
    internal_requirements: Tuple[InternalRequirement, ...]

    @property
    def package_path(self) -> Path:
        return self.path.parent

    def is_synchronized(self, internal_version: str) -> bool:
        expected = f"^{internal_version}"
        return all(item.requirement == expected for item in self.internal_requirements)


def manifest_path(package_path: Path) -> Path:
    if package_path.name == MANIFEST_NAME:
        return package_path
    return package_path / MANIFEST_NAME


def _iter_dependency_tables(data: Dict[str, Any]) -> Iterator[Tuple[str, Dict[str, Any]]]:
    for table in DEPENDENCY_TABLES:
        body = data.get(table)
        if isinstance(body, dict):
            yield table, body
    targets = data.get("target")
    if isinstance(targets, dict):
        for cfg in sorted(targets):
            target_body = targets[cfg]
            if not isinstance(target_body, dict):
                continue
            for table in DEPENDENCY_TABLES:
                body = target_body.get(table)
                if isinstance(body, dict):
                    yield f"target.{cfg}.{table}", body


def _requirement_of(entry: Any) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict) and isinstance(entry.get("version"), str):
        return entry["version"]
    return None


def internal_requirements(data: Dict[str, Any], prefix: str) -> List[InternalRequirement]:
    found: List[InternalRequirement] = []
    for table, body in _iter_dependency_tables(data):
        for name in sorted(body):
            if not name.startswith(prefix):
                continue
            requirement = _requirement_of(body[name])
            if requirement is None:
                continue
            found.append(InternalRequirement(table=table, name=name, requirement=requirement))
    return found


def parse_rust_version(text: str) -> SemanticVersion:
    match = _RUST_VERSION_RE.fullmatch(text)
    if match is None:
        raise ParseError(f"invalid rust-version `{text}`: expected MAJOR.MINOR[.PATCH]")
    major, minor, patch = match.groups()
    return SemanticVersion(int(major), int(minor), int(patch or 0))


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ManifestError(f"could not read `{path}`: {exc}") from exc


def parse_manifest_text(text: str, path: Path, prefix: str) -> PackageManifest:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ManifestError(f"`{path}` is not valid TOML: {exc}") from exc
    package = data.get("package")
    if not isinstance(package, dict):
        raise ManifestError(f"`{path}` has no [package] table")
    raw_rust_version = package.get("rust-version")
    min_version: Optional[SemanticVersion] = None
    if raw_rust_version is not None:
        if not isinstance(raw_rust_version, str):
            raise ManifestError(
                f"`{path}`: rust-version must be a literal version, not {raw_rust_version!r}"
            )
        try:
            min_version = parse_rust_version(raw_rust_version)
        except ParseError as exc:
            raise ManifestError(f"`{path}`: {exc.message}") from exc
    version = package.get("version")
    return PackageManifest(
        path=path,
        package_name=str(package.get("name", "")),
        package_version=version if isinstance(version, str) else "",
        min_supported_version=min_version,
        internal_requirements=tuple(internal_requirements(data, prefix)),
    )


def load_manifest(package_path: Path, prefix: str) -> PackageManifest:
    path = manifest_path(package_path)
    return parse_manifest_text(_read_text(path), path, prefix)


def pinned_toolchain(package_path: Path) -> Optional[SemanticVersion]:
    """Exact version pinned by the package's toolchain file, if it pins one."""
    for filename in TOOLCHAIN_FILES:
        path = package_path / filename
        if not path.is_file():
            continue
        text = _read_text(path)
        try:
            data = tomllib.loads(text)
        except tomllib.TOMLDecodeError:
            channel: Any = text.strip()
        else:
            toolchain = data.get("toolchain")
            channel = toolchain.get("channel") if isinstance(toolchain, dict) else None
        if not isinstance(channel, str):
            return None
        try:
            return parse(channel)
        except ParseError:
            return None
    return None


def detect_clippy_utils_version(package_path: Path) -> SemanticVersion:
    contents = _read_text(manifest_path(package_path))
    for line in contents.splitlines():
        match = _CLIPPY_UTILS_TAG_RE.match(line)
        if match:
            return parse(match.group(1))
    raise ManifestError("Could not determine `clippy_utils` version")
