"""coldvault - Integrity-verified transfers to and from cold archive storage."""

__version__ = "0.1.0"
