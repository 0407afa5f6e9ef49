"""Collaborator contracts the dependency manager relies on."""

from __future__ import annotations

from typing import Protocol

from ..dep.models import Dependency
from ..marshaler.package import PackageImage, ParsedPackage


class Cache(Protocol):
    """Stores parsed packages keyed by finalized dependency."""

    def get(self, dep: Dependency) -> ParsedPackage:
        """Return the stored package; raise errors.NotFound when absent."""

    def store(self, dep: Dependency, pkg: ParsedPackage) -> None:
        """Store a package, replacing any previous entry for the dependency."""


class ImageResolver(Protocol):
    """Registry access for package images."""

    async def resolve_tag(self, dep: Dependency) -> str:
        """Resolve the dependency's constraints to a concrete tag."""

    async def resolve_digest(self, dep: Dependency) -> str:
        """Return the content digest currently tagged for a finalized dependency."""

    async def fetch(self, dep: Dependency) -> PackageImage:
        """Fetch the raw package content for a finalized dependency."""


class XpkgMarshaler(Protocol):
    """Turns raw package content into parsed packages."""

    def parse(self, image: PackageImage) -> ParsedPackage:
        """Parse content; raise errors.MalformedPackage when invalid."""
