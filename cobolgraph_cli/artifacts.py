"""Writes generated artifacts to disk under their package directories."""

from __future__ import annotations

import logging
import re
from pathlib import Path, PurePath
from typing import Dict, List, Optional, Sequence, Tuple

from .models import GeneratedArtifact
from .output_parser import derive_type_name

logger = logging.getLogger(__name__)

# Build and resource files keep their own suffix and land at the output root.
PASSTHROUGH_SUFFIXES = (".xml", ".properties", ".yaml", ".yml")

_INVALID_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_CODE_MARKERS = ("public class", "*/", "@", "{", "}")


def sanitize_file_name(file_name: str) -> str:
    """Reduce a model-supplied key to a safe file name; '' when it looks like code."""
    lines = [line for line in (file_name or "").splitlines() if line.strip()]
    if not lines:
        return ""
    first = lines[0].strip()
    if any(marker in first for marker in _CODE_MARKERS):
        return ""

    # Keep only the last path component so keys like "src/Foo.java" cannot escape.
    first = re.split(r"[\\/]", first)[-1]
    sanitized = _INVALID_CHARS.sub("", first).strip()
    if not sanitized or sanitized.strip(".") == "":
        return ""

    lowered = sanitized.lower()
    if lowered.endswith(".java") or lowered.endswith(PASSTHROUGH_SUFFIXES):
        return sanitized
    return sanitized.rstrip(".") + ".java"


def target_path(artifact: GeneratedArtifact, output_dir: Path) -> Path:
    name = sanitize_file_name(artifact.file_name)
    if not name:
        name = f"{derive_type_name(artifact.content)}.java"
        logger.warning("Invalid file name %r replaced with %s", artifact.file_name[:60], name)
    if not name.lower().endswith(".java"):
        return Path(output_dir) / name
    return Path(output_dir) / artifact.package_path / name


def save_artifact(artifact: GeneratedArtifact, output_dir: Path, path: Optional[Path] = None) -> Path:
    """Write one artifact and return where it landed."""
    path = path or target_path(artifact, output_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(artifact.content, encoding="utf-8")
    logger.info("Saved %s", path)
    return path


def _claim_path(artifact: GeneratedArtifact, output_dir: Path, claimed: Dict[Path, str]) -> Optional[Path]:
    """Pick a path nobody else wrote to in this run, or None.

    A clash with another unit's file moves this one under a directory named
    after its unit, e.g. ``P2/pom.xml``.
    """
    path = target_path(artifact, output_dir)
    owner = claimed.get(path)
    if owner is None:
        return path
    if owner == artifact.origin_unit_id:
        return None
    relocated = Path(output_dir) / PurePath(artifact.origin_unit_id).stem / path.relative_to(output_dir)
    if relocated in claimed:
        return None
    logger.warning("%s from %s clashes with %s; writing %s", path.name, artifact.origin_unit_id, owner, relocated)
    return relocated


def write_artifacts(
    artifacts: Sequence[GeneratedArtifact],
    output_dir: Path,
) -> Tuple[List[Path], List[str]]:
    """Save every artifact; failures are collected, never raised.

    No file is written twice in one call: a second artifact for an occupied
    path goes under its unit's directory, or is reported as an error when
    that is occupied too.

    Returns:
        Tuple of (written paths, error messages).
    """
    written: List[Path] = []
    errors: List[str] = []
    claimed: Dict[Path, str] = {}
    for artifact in artifacts:
        path = _claim_path(artifact, output_dir, claimed)
        if path is None:
            message = f"{artifact.file_name} (from {artifact.origin_unit_id}): duplicate output path"
            logger.error("Could not write %s", message)
            errors.append(message)
            continue
        try:
            written.append(save_artifact(artifact, output_dir, path))
        except OSError as exc:
            message = f"{artifact.file_name} (from {artifact.origin_unit_id}): {exc}"
            logger.error("Could not write %s", message)
            errors.append(message)
            continue
        claimed[path] = artifact.origin_unit_id
    return written, errors
