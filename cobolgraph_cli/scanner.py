"""Discovers COBOL programs and copybooks under a source directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Set

from .config import MODULE_EXTENSIONS, PROGRAM_EXTENSIONS
from .errors import ConfigurationError
from .models import SourceUnit

logger = logging.getLogger(__name__)

SKIP_DIRS: Set[str] = {".git", ".hg", ".svn", "node_modules", "target", "build", "__pycache__"}


def _collect(root: Path, extensions) -> List[Path]:
    return sorted(
        path
        for path in root.rglob("*")
        if path.is_file()
        and path.suffix.lower() in extensions
        and not any(part in SKIP_DIRS for part in path.relative_to(root).parts)
    )


def _load(path: Path, is_module: bool) -> SourceUnit:
    # COBOL sources are frequently Latin-1; never fail on a stray byte.
    content = path.read_text(encoding="utf-8", errors="replace")
    return SourceUnit(name=path.name, content=content, is_module=is_module, path=str(path))


def scan_directory(root: Path) -> List[SourceUnit]:
    """Load every program (``.cbl``/``.cob``) then every copybook (``.cpy``) under ``root``.

    Each group is sorted by path. Unit ids are file names; when two files share
    a name only the first is kept.

    Raises:
        ConfigurationError: If ``root`` is not a directory.
    """
    root = Path(root).expanduser()
    if not root.is_dir():
        raise ConfigurationError(f"Source directory not found: {root}")

    units: List[SourceUnit] = []
    seen: Set[str] = set()
    for extensions, is_module in ((PROGRAM_EXTENSIONS, False), (MODULE_EXTENSIONS, True)):
        for path in _collect(root, extensions):
            if path.name in seen:
                logger.warning("Duplicate unit name %s at %s; keeping the first", path.name, path)
                continue
            try:
                unit = _load(path, is_module)
            except OSError as exc:
                logger.warning("Skipping unreadable file %s: %s", path, exc)
                continue
            seen.add(path.name)
            units.append(unit)

    programs = sum(1 for unit in units if not unit.is_module)
    logger.info("Found %d program(s) and %d copybook(s) in %s", programs, len(units) - programs, root)
    return units
