"""Local Task Tracker - single-instance coordination core."""

__version__ = "1.0.0"
