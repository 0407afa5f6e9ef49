"""Dependency manager and snapshots."""

from .interfaces import Cache, ImageResolver, XpkgMarshaler
from .manager import Manager
from .snapshot import Snapshot

__all__ = ["Cache", "ImageResolver", "Manager", "Snapshot", "XpkgMarshaler"]
