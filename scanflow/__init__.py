"""Scanflow - scanned document triage service"""

__version__ = "1.0.0"
