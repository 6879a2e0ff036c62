"""Timeline-based thumbnail video rendering service."""

__version__ = "0.1.0"
