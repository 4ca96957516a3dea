"""Construction-site safety monitoring: camera orchestration and hazard analysis."""

__version__ = "0.1.0"
