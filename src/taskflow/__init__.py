"""Recurring occurrence and notification delivery engine for TaskFlow."""

__version__ = "0.1.0"
