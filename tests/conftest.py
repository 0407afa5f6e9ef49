"""Shared in-memory collaborators for manager and CLI tests."""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from xpkgdep.constants import PackageType
from xpkgdep.dep.models import Dependency, GroupVersionKind
from xpkgdep.errors import NotFound, ResolutionError
from xpkgdep.marshaler.package import PackageImage, ParsedPackage, SchemaValidator
from xpkgdep.resolver.versions import pick_version


def make_package(name, version, digest, deps=(), types=None, pkg_type=PackageType.PROVIDER):
    """Build a ParsedPackage; ``types`` maps GVK -> schema."""
    validators = {gvk: SchemaValidator(schema) for gvk, schema in (types or {}).items()}
    return ParsedPackage(
        name=name,
        type=pkg_type,
        version=version,
        digest=digest,
        dependencies=tuple(deps),
        validators=validators,
    )


class FakeRegistry:
    """Image resolver over a dict of published packages."""

    def __init__(self, packages=()):
        self.published: Dict[Tuple[str, str], ParsedPackage] = {}
        self.calls: List[Tuple[str, str, str]] = []
        self.errors: Dict[Tuple[str, str], BaseException] = {}
        self.delays: Dict[Tuple[str, str], float] = {}
        self.in_flight = 0
        self.max_in_flight = 0
        self.stopped = 0
        for pkg in packages:
            self.publish(pkg)

    def publish(self, pkg: ParsedPackage) -> None:
        self.published[(pkg.name, pkg.version)] = pkg

    def count(self, op: str, package: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if c[0] == op and (package is None or c[1] == package))

    async def _enter(self, op: str, dep: Dependency) -> None:
        self.calls.append((op, dep.package, dep.constraints))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get((op, dep.package))
            if delay:
                await asyncio.sleep(delay)
            else:
                await asyncio.sleep(0)
            err = self.errors.get((op, dep.package))
            if err is not None:
                raise err
        finally:
            self.in_flight -= 1

    async def resolve_tag(self, dep: Dependency) -> str:
        await self._enter("resolve_tag", dep)
        tags = [version for (name, version) in self.published if name == dep.package]
        tag, _, err = pick_version(dep.constraints, tags)
        if tag is None:
            raise ResolutionError(f"{dep}: {err}", dependency=dep)
        return tag

    async def resolve_digest(self, dep: Dependency) -> str:
        await self._enter("resolve_digest", dep)
        return self.published[(dep.package, dep.constraints)].digest

    async def fetch(self, dep: Dependency) -> PackageImage:
        await self._enter("fetch", dep)
        pkg = self.published[(dep.package, dep.constraints)]
        return PackageImage(package=dep.package, tag=dep.constraints, digest=pkg.digest, layer=b"")

    async def stop(self) -> None:
        self.stopped += 1


class FakeMarshaler:
    """Marshaler returning the registry's package for a fetched image."""

    def __init__(self, registry: FakeRegistry):
        self.registry = registry
        self.parsed: List[Tuple[str, str]] = []
        self.errors: Dict[str, BaseException] = {}

    def parse(self, image: PackageImage) -> ParsedPackage:
        self.parsed.append((image.package, image.tag))
        if image.package in self.errors:
            raise self.errors[image.package]
        return self.registry.published[(image.package, image.tag)]


class MemoryCache:
    """Cache keyed by finalized (package, version)."""

    def __init__(self):
        self.entries: Dict[Tuple[str, str], ParsedPackage] = {}
        self.gets: List[Tuple[str, str]] = []
        self.stores: List[Tuple[str, str]] = []
        self.get_error: Optional[BaseException] = None

    def get(self, dep: Dependency) -> ParsedPackage:
        self.gets.append((dep.package, dep.constraints))
        if self.get_error is not None:
            raise self.get_error
        try:
            return self.entries[(dep.package, dep.constraints)]
        except KeyError:
            raise NotFound(f"{dep}: not in cache", dependency=dep) from None

    def store(self, dep: Dependency, pkg: ParsedPackage) -> None:
        self.stores.append((dep.package, dep.constraints))
        self.entries[(dep.package, dep.constraints)] = pkg


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def marshaler(registry):
    return FakeMarshaler(registry)


@pytest.fixture
def memory_cache():
    return MemoryCache()


@pytest.fixture
def widget_gvk():
    return GroupVersionKind("example.org", "v1", "Widget")
