"""PR line-survival provenance engine."""

__version__ = "0.1.0"
