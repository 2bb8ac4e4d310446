"""Celery task modules for Tillpoint."""

# Import submodules so Celery autodiscovery registers tasks.
from . import loyalty as _loyalty  # noqa: F401

__all__ = ["_loyalty"]
