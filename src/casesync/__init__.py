"""casesync - offline-first synchronization for a law office practice manager."""

__version__ = "0.1.0"
