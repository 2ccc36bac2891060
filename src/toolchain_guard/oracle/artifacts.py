from __future__ import annotations

import shutil
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

from ..errors import AmbiguousArtifact
from ..toolchain.provider import ToolchainHandle

LIBRARY_EXTENSIONS = (".so", ".dylib", ".dll")


def parse_library_filename(filename: str) -> Optional[Tuple[str, Optional[str]]]:
    """Split ``lib<name>[@<toolchain>].<ext>`` into ``(name, toolchain)``."""
    for ext in LIBRARY_EXTENSIONS:
        if filename.endswith(ext):
            stem = filename[: -len(ext)]
            break
    else:
        return None
    if ext != ".dll":
        if not stem.startswith("lib"):
            return None
        stem = stem[3:]
    name, sep, toolchain = stem.partition("@")
    if not name:
        return None
    if sep and not toolchain:
        return None
    return name, (toolchain or None)


def tagged_filename(name: str, toolchain: str, ext: str) -> str:
    prefix = "" if ext == ".dll" else "lib"
    return f"{prefix}{name}@{toolchain}{ext}"


def find_ambiguous_artifacts(search_path: Iterable[Path]) -> Dict[str, List[str]]:
    candidates: Dict[str, List[str]] = {}
    for directory in search_path:
        if not directory.is_dir():
            continue
        for entry in sorted(directory.iterdir()):
            if not entry.is_file():
                continue
            parsed = parse_library_filename(entry.name)
            if parsed is None or parsed[1] is None:
                continue
            candidates.setdefault(parsed[0], []).append(str(entry))
    return {name: paths for name, paths in candidates.items() if len(paths) > 1}


def stage_plugin_artifacts(target_dir: Path, handle: ToolchainHandle) -> List[Path]:
    profile_dir = target_dir / "debug"
    if not profile_dir.is_dir():
        return []
    built: List[Tuple[str, Path]] = []
    tagged: Dict[str, List[Path]] = {}
    for entry in sorted(profile_dir.iterdir()):
        if not entry.is_file():
            continue
        parsed = parse_library_filename(entry.name)
        if parsed is None:
            continue
        name, toolchain = parsed
        if toolchain is None:
            built.append((name, entry))
        else:
            tagged.setdefault(name, []).append(entry)

    staged: List[Path] = []
    for name, source in built:
        dest = profile_dir / tagged_filename(name, handle.name, source.suffix)
        for stale in tagged.get(name, []):
            if stale != dest:
                stale.unlink()
        shutil.copy2(source, dest)
        staged.append(dest)

    ambiguous = find_ambiguous_artifacts([profile_dir])
    if ambiguous:
        name = min(ambiguous)
        raise AmbiguousArtifact(name, ambiguous[name])
    return staged
