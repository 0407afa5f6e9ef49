"""Immutable merged view of validators across a resolved dependency closure."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Optional

from ..dep.models import GroupVersionKind
from ..marshaler.package import ParsedPackage, SchemaValidator


class Snapshot:
    """Validators keyed by type, merged from one resolution run.

    Built once from the run's packages in encounter order; when several
    packages export the same type, the last one wins.
    """

    def __init__(self, view: Mapping[GroupVersionKind, SchemaValidator]):
        self._view = MappingProxyType(dict(view))

    @classmethod
    def from_packages(cls, packages: Iterable[ParsedPackage]) -> "Snapshot":
        view = {}
        for pkg in packages:
            for gvk, validator in pkg.validators.items():
                view[gvk] = validator
        return cls(view)

    @property
    def view(self) -> Mapping[GroupVersionKind, SchemaValidator]:
        """Read-only mapping from type to validator."""
        return self._view

    def gvks(self) -> List[GroupVersionKind]:
        """Exported types ordered by group, then kind, then version."""
        return sorted(self._view, key=lambda gvk: (gvk.group, gvk.kind, gvk.version))

    def validator_for(self, gvk: GroupVersionKind) -> Optional[SchemaValidator]:
        return self._view.get(gvk)

    def validate(self, obj: Mapping[str, Any]) -> List[str]:
        """Validate a manifest against the validator for its apiVersion/kind.

        Returns:
            List of error messages; empty when the object is valid.
        """
        gvk = GroupVersionKind.from_object(obj)
        if gvk is None:
            return ["object has no apiVersion/kind"]
        validator = self._view.get(gvk)
        if validator is None:
            return [f"no validator for {gvk}"]
        return validator.iter_errors(obj)

    def __contains__(self, gvk: object) -> bool:
        return gvk in self._view

    def __len__(self) -> int:
        return len(self._view)

    def __repr__(self) -> str:
        return f"Snapshot({len(self._view)} types)"
