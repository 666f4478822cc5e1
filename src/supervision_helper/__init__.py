"""Supervision Helper: supervision notes to formal record and feedback card."""

__version__ = "0.1.0"
