"""Version information for questlog."""

__version__ = "0.3.0"
