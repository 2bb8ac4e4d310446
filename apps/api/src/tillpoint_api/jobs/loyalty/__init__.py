"""Loyalty job exports."""

from .birthday import run_birthday_bonuses  # noqa: F401

__all__ = [
    "run_birthday_bonuses",
]
