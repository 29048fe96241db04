"""Live fantasy-football scoring event pipeline."""

__version__ = "0.1.0"
