"""Recurring job entrypoints for loyalty automation."""

__all__ = [
    "loyalty",
]
