"""Celery task modules for RewardFlow."""

# Import submodules so Celery autodiscovery registers tasks.
from . import conditions as _conditions  # noqa: F401

__all__ = ["_conditions"]
