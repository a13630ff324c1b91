"""Recurring housekeeping job entrypoints."""

__all__ = ["retention"]
