"""Heuristic extraction of COPY / INCLUDE references from COBOL source text.

This is pattern matching, not a parser: malformed or partial statements are
skipped silently and extraction never raises.
"""

from __future__ import annotations

import re
from collections import Counter
from typing import Iterator, List, Tuple

from .models import ReferenceEdge

MODULE_EXTENSION = ".cpy"
KNOWN_EXTENSIONS = (".cpy", ".cbl", ".cob")

# COPY name / COPY name.cpy / COPY 'name' / COPY "name" / [EXEC SQL] INCLUDE name
_REFERENCE_PATTERN = re.compile(
    r"(?<![\w-])(COPY|INCLUDE)\s+(['\"]?)([A-Za-z0-9_-]+)((?:\.[A-Za-z]{3})?)\2",
    re.IGNORECASE,
)


def _is_comment(line: str) -> bool:
    # Fixed format uses column 7 as the indicator area.
    if line.lstrip().startswith("*>"):
        return True
    return len(line) > 6 and line[6] in "*/"


def canonical_module_name(name: str) -> str:
    """Return ``name`` with the conventional copybook extension appended if absent."""
    name = name.strip().strip("'\"")
    if name.lower().endswith(KNOWN_EXTENSIONS):
        return name
    return name + MODULE_EXTENSION


def _iter_matches(content: str) -> Iterator[Tuple[int, str, str, str]]:
    """Yield ``(line_number, kind, canonical_name, line_text)`` for every match."""
    for line_number, line in enumerate(content.splitlines(), 1):
        if _is_comment(line):
            continue
        for match in _REFERENCE_PATTERN.finditer(line):
            name = match.group(3)
            extension = match.group(4) or ""
            if extension and extension.lower() not in KNOWN_EXTENSIONS:
                extension = ""
            yield line_number, match.group(1).upper(), canonical_module_name(name + extension), line.strip()


def extract_references(content: str) -> List[str]:
    """Return referenced module names in first-seen order, without duplicates."""
    if not content:
        return []
    seen = set()
    names: List[str] = []
    for _, _, name, _ in _iter_matches(content):
        key = name.lower()
        if key in seen:
            continue
        seen.add(key)
        names.append(name)
    return names


def extract_reference_edges(source: str, content: str) -> List[ReferenceEdge]:
    """Return every reference occurrence as an edge, duplicates included."""
    if not content:
        return []
    return [
        ReferenceEdge(source=source, target=name, kind=kind, line_number=line_number, context=text)
        for line_number, kind, name, text in _iter_matches(content)
    ]


def count_references(content: str) -> Counter:
    """Raw occurrence count per referenced module (case-insensitive key, first spelling kept)."""
    counts: Counter = Counter()
    spelling = {}
    for _, _, name, _ in _iter_matches(content or ""):
        key = spelling.setdefault(name.lower(), name)
        counts[key] += 1
    return counts
