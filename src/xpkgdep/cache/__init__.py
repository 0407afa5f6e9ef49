"""Local package cache."""

from .local import LocalCache

__all__ = ["LocalCache"]
