from .manifest import (
    InternalRequirement,
    PackageManifest,
    detect_clippy_utils_version,
    load_manifest,
    parse_manifest_text,
    pinned_toolchain,
)
from .updater import ManifestUpdater, render_manifest

__all__ = [
    "InternalRequirement",
    "PackageManifest",
    "detect_clippy_utils_version",
    "load_manifest",
    "parse_manifest_text",
    "pinned_toolchain",
    "ManifestUpdater",
    "render_manifest",
]
