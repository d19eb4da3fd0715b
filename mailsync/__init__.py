"""mailsync: multi-provider email synchronization engine."""

__version__ = "1.0.0"
