"""Data models for dependency identities."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping, NamedTuple, Optional

from ..constants import PackageType


@dataclass(frozen=True)
class Dependency:
    """A package reference plus version constraint; the unit of resolution.

    ``constraints`` holds a semantic range until the dependency is finalized,
    after which it holds the concrete tag picked by the image resolver.
    """
    package: str
    constraints: str = ""
    type: PackageType = PackageType.UNKNOWN

    def finalize(self, version: str) -> "Dependency":
        """Return a copy pinned to a concrete, resolver-assigned version."""
        return replace(self, constraints=version)

    def to_dict(self) -> dict:
        return {
            "package": self.package,
            "constraints": self.constraints,
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Dependency":
        return cls(
            package=str(data.get("package", "")),
            constraints=str(data.get("constraints", "")),
            type=PackageType.from_kind(str(data.get("type", ""))),
        )

    def __str__(self) -> str:
        if not self.constraints:
            return self.package
        return f"{self.package}@{self.constraints}"


class GroupVersionKind(NamedTuple):
    """Type identifier under which validators are exported."""
    group: str
    version: str
    kind: str

    @property
    def api_version(self) -> str:
        """Kubernetes-style apiVersion string ("group/version", or just version for core)."""
        return f"{self.group}/{self.version}" if self.group else self.version

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> Optional["GroupVersionKind"]:
        """Derive the GVK of a manifest from its apiVersion and kind; None if absent."""
        api_version = obj.get("apiVersion")
        kind = obj.get("kind")
        if not isinstance(api_version, str) or not isinstance(kind, str) or not kind:
            return None
        if "/" in api_version:
            group, version = api_version.split("/", 1)
        else:
            group, version = "", api_version
        return cls(group, version, kind)

    def __str__(self) -> str:
        return f"{self.api_version}, Kind={self.kind}"
