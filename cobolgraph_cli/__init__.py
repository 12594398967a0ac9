"""CobolGraph CLI: LLM-driven COBOL migration with dependency graph analysis."""

__version__ = "0.1.0"
