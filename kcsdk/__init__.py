"""Tracker module loading and channel playback, glob matching, hex dumps and CRC-32 for a handheld console SDK."""

__version__ = "0.1.0"