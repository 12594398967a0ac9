"""Configuration paths and fixed names for CobolGraph."""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(os.environ.get("COBOLGRAPH_HOME", str(Path.home() / ".cobolgraph"))).expanduser()

PROGRAM_EXTENSIONS = (".cbl", ".cob")
MODULE_EXTENSIONS = (".cpy",)

DEFAULT_PACKAGE = "com.example.cobol"
DEFAULT_TYPE_NAME = "ConvertedCobolProgram"

# Output files written next to the generated sources.
DEPENDENCY_MAP_FILE = "dependency-map.json"
DEPENDENCY_DIAGRAM_FILE = "dependency-diagram.md"
REPORT_FILE = "migration-report.md"
API_CALL_LOG_FILE = "api-calls.json"
