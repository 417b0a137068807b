"""In-process change data capture engine."""

__version__ = "0.1.0"
