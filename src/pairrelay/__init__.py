"""pairrelay - pairing and message relay for two devices."""

__version__ = "0.1.0"
