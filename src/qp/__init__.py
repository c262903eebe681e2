"""qp: quarterly plans refined by external AI coding agents."""

__version__ = "0.1.0"
