"""Campus shuttle boarding-pass service."""

__version__ = "0.1.0"
