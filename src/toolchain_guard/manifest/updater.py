from __future__ import annotations

import re
from typing import List, Optional

from ..config import Settings
from ..errors import ManifestError, ManifestWriteError
from ..ledger.ledger import Ledger
from ..utils import atomic_write_bytes, hash_bytes
from ..version import SemanticVersion
from .manifest import PackageManifest, parse_manifest_text

_NAME = r"[A-Za-z0-9_\-]+"
_HEADER_RE = re.compile(r"^\s*\[(?!\[)\s*([^\]]+?)\s*\]\s*(?:#.*)?$")
# Top-level dependency tables, or the same tables under `target.<cfg>`.
_DEP_TABLE_PREFIX = (
    r"^(?:target\.\s*(?:'[^']*'|\"[^\"]*\"|[^.'\"]+)\s*\.\s*)?"
    r"(?:dev-|build-)?dependencies"
)
_DEP_TABLE_RE = re.compile(_DEP_TABLE_PREFIX + r"$")
_DEP_SUBTABLE_RE = re.compile(
    _DEP_TABLE_PREFIX + r"\.\s*[\"']?(" + _NAME + r")[\"']?$"
)
_RUST_VERSION_RE = re.compile(r'^(\s*rust-version\s*=\s*)"[^"]*"(.*)$')
_PACKAGE_VERSION_RE = re.compile(r"^\s*version\s*=")
_DEP_INLINE_RE = re.compile(
    r"^(\s*[\"']?)(" + _NAME + r")([\"']?\s*=\s*\{.*?\bversion\s*=\s*)\"[^\"]*\"(.*)$"
)
_DEP_STRING_RE = re.compile(r"^(\s*[\"']?)(" + _NAME + r")([\"']?\s*=\s*)\"[^\"]*\"(.*)$")
_VERSION_LINE_RE = re.compile(r'^(\s*version\s*=\s*)"[^"]*"(.*)$')


def _section_mode(header: str, prefix: str) -> Optional[str]:
    if header == "package":
        return "package"
    if _DEP_TABLE_RE.search(header):
        return "deps"
    match = _DEP_SUBTABLE_RE.search(header)
    if match and match.group(1).startswith(prefix):
        return "internal-dep"
    return None


def render_manifest(
    text: str, version: SemanticVersion, internal_version: str, prefix: str
) -> str:
    """Return ``text`` with rust-version and internal requirements rewritten.

    Only the affected string values change; comments and layout are kept.
    """
    requirement = f"^{internal_version}"
    out: List[str] = []
    mode: Optional[str] = None
    rust_version_written = False
    package_anchor: Optional[int] = None
    package_version_seen = False

    for raw in text.splitlines(keepends=True):
        body = raw.rstrip("\r\n")
        ending = raw[len(body):]
        header = _HEADER_RE.match(body)
        if header:
            mode = _section_mode(header.group(1), prefix)
            if mode == "package" and package_anchor is None:
                package_anchor = len(out)
            out.append(raw)
            continue
        if mode == "package":
            match = _RUST_VERSION_RE.match(body)
            if match:
                body = f'{match.group(1)}"{version}"{match.group(2)}'
                rust_version_written = True
            elif not package_version_seen and _PACKAGE_VERSION_RE.match(body):
                package_anchor = len(out)
                package_version_seen = True
        elif mode == "deps":
            match = _DEP_INLINE_RE.match(body) or _DEP_STRING_RE.match(body)
            if match and match.group(2).startswith(prefix):
                body = f'{match.group(1)}{match.group(2)}{match.group(3)}"{requirement}"{match.group(4)}'
        elif mode == "internal-dep":
            match = _VERSION_LINE_RE.match(body)
            if match:
                body = f'{match.group(1)}"{requirement}"{match.group(2)}'
        out.append(body + ending)

    if not rust_version_written:
        if package_anchor is None:
            raise ManifestError("manifest has no [package] table")
        anchor = out[package_anchor]
        newline = anchor[len(anchor.rstrip("\r\n")):]
        if not newline:
            newline = "\n"
            out[package_anchor] = anchor + newline
        out.insert(package_anchor + 1, f'rust-version = "{version}"{newline}')
    return "".join(out)


class ManifestUpdater:
    def __init__(self, settings: Optional[Settings] = None, ledger: Optional[Ledger] = None) -> None:
        self.settings = settings or Settings()
        self.ledger = ledger or Ledger.disabled()

    def commit(self, manifest: PackageManifest, version: SemanticVersion) -> PackageManifest:
        prefix = self.settings.internal_dependency_prefix
        internal_version = self.settings.internal_version
        try:
            original = manifest.path.read_bytes()
        except OSError as exc:
            raise ManifestWriteError(f"could not read `{manifest.path}`: {exc}") from exc
        try:
            text = original.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ManifestWriteError(f"could not read `{manifest.path}`: {exc}") from exc
        rendered = render_manifest(text, version, internal_version, prefix)
        updated = parse_manifest_text(rendered, manifest.path, prefix)
        if updated.min_supported_version != version or not updated.is_synchronized(
            internal_version
        ):
            raise ManifestWriteError(
                f"could not rewrite `{manifest.path}`: unsupported rust-version or "
                f"{prefix}* dependency layout"
            )
        data = rendered.encode("utf-8")
        try:
            atomic_write_bytes(manifest.path, data)
        except OSError as exc:
            raise ManifestWriteError(f"could not write `{manifest.path}`: {exc}") from exc
        self.ledger.append(
            "MANIFEST_WRITTEN",
            {
                "path": manifest.path,
                "previous": str(manifest.min_supported_version or ""),
                "rust_version": str(version),
                "requirements": [
                    f"{item.table}.{item.name}={item.requirement}"
                    for item in updated.internal_requirements
                ],
                "previous_hash": hash_bytes(original),
                "content_hash": hash_bytes(data),
            },
        )
        return updated
