"""Parsing of the conversion agent's JSON output into generated files.

The model is asked for a flat ``{"File.java": "content", ...}`` object but
regularly wraps it in code fences. Nothing here raises: malformed output
becomes an empty mapping plus an error message for the caller.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Dict, List

from .config import DEFAULT_PACKAGE, DEFAULT_TYPE_NAME
from .models import GeneratedArtifact

_FENCE_PATTERN = re.compile(r"```[a-zA-Z]*\r?\n?|```")
_PACKAGE_PATTERN = re.compile(r"^\s*package\s+([A-Za-z_][\w.]*)\s*;", re.MULTILINE)
_PUBLIC_TYPE_PATTERN = re.compile(
    r"^public\s+(?:(?:final|abstract|sealed|static)\s+)*(?:class|interface|enum|record)\s+([^\s{(<]+)"
)
_ANY_CLASS_PATTERN = re.compile(r"\bclass\s+([^\s{(<]+)")
_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class ParsedOutput:
    files: Dict[str, str] = field(default_factory=dict)
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def strip_code_fences(raw_text: str) -> str:
    """Remove every fence marker, wherever it appears, and trim."""
    return _FENCE_PATTERN.sub("", raw_text or "").strip()


def parse_generated_files(raw_text: str) -> ParsedOutput:
    """Parse ``raw_text`` as a flat string-to-string JSON object.

    Args:
        raw_text: Model output, possibly fenced.

    Returns:
        ParsedOutput with the file mapping, or an empty mapping and ``error``
        set when the text is not a flat object of strings.
    """
    cleaned = strip_code_fences(raw_text)
    if not cleaned:
        return ParsedOutput(error="Empty conversion output")

    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        return ParsedOutput(error=f"Conversion output is not valid JSON: {exc.msg} (line {exc.lineno}, column {exc.colno})")

    if not isinstance(payload, dict):
        return ParsedOutput(error=f"Conversion output is a JSON {type(payload).__name__}, expected an object")

    bad_keys = [key for key, value in payload.items() if not isinstance(value, str)]
    if bad_keys:
        return ParsedOutput(error="Non-string content for: " + ", ".join(sorted(bad_keys)))

    return ParsedOutput(files=dict(payload))


def is_valid_identifier(name: str) -> bool:
    return bool(name) and bool(_IDENTIFIER_PATTERN.match(name))


def derive_type_name(content: str) -> str:
    """Best-effort primary type name; ``ConvertedCobolProgram`` when none is found.

    Looks for the first ``public class|interface|enum|record`` line, then any
    ``class X`` occurrence. Candidates that are not plain identifiers are
    rejected.
    """
    for line in (content or "").splitlines():
        match = _PUBLIC_TYPE_PATTERN.match(line.strip())
        if match and is_valid_identifier(match.group(1)):
            return match.group(1)

    match = _ANY_CLASS_PATTERN.search(content or "")
    if match and is_valid_identifier(match.group(1)):
        return match.group(1)
    return DEFAULT_TYPE_NAME


def derive_package_name(content: str) -> str:
    """First ``package x.y;`` declaration, else ``com.example.cobol``."""
    match = _PACKAGE_PATTERN.search(content or "")
    if match:
        return match.group(1)
    return DEFAULT_PACKAGE


def build_artifacts(files: Dict[str, str], origin_unit_id: str) -> List[GeneratedArtifact]:
    """Wrap parsed files as artifacts, in the order the model emitted them."""
    return [
        GeneratedArtifact(
            file_name=file_name,
            content=content,
            package_name=derive_package_name(content),
            type_name=derive_type_name(content),
            origin_unit_id=origin_unit_id,
        )
        for file_name, content in files.items()
    ]
