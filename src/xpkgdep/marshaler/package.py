"""Package data: fetched image content, parsed package metadata and validators."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

from jsonschema import Draft7Validator

from ..constants import PackageType
from ..dep.models import Dependency, GroupVersionKind


@dataclass(frozen=True)
class PackageImage:
    """Raw content fetched for one finalized dependency.

    ``layer`` is the package layer blob: a tar archive, optionally gzipped,
    holding package.yaml.
    """
    package: str
    tag: str
    digest: str
    layer: bytes = field(repr=False)


class SchemaValidator:
    """Validates objects of one type against its OpenAPI v3 schema.

    The schema is checked with a jsonschema Draft 7 validator, which covers
    the structural subset used by custom resource schemas.
    """

    def __init__(self, schema: Mapping[str, Any]):
        self._schema = dict(schema)
        self._validator: Optional[Draft7Validator] = None

    @property
    def schema(self) -> Dict[str, Any]:
        return self._schema

    def iter_errors(self, obj: Any) -> List[str]:
        """Return one message per violation, ordered by path."""
        if self._validator is None:
            self._validator = Draft7Validator(self._schema)
        errs = sorted(self._validator.iter_errors(obj), key=lambda e: list(e.path))
        messages = []
        for err in errs:
            path = "/".join(str(p) for p in err.path)
            messages.append(f"{path}: {err.message}" if path else err.message)
        return messages

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SchemaValidator):
            return NotImplemented
        return self._schema == other._schema

    def __hash__(self) -> int:
        return hash(json.dumps(self._schema, sort_keys=True, default=str))

    def __repr__(self) -> str:
        return f"SchemaValidator(properties={sorted(self._schema.get('properties', {}))!r})"


@dataclass(frozen=True)
class ParsedPackage:
    """Metadata for one concrete package version.

    Two packages with the same digest are the same content, whatever else
    they carry.
    """
    name: str
    type: PackageType
    version: str
    digest: str
    dependencies: Tuple[Dependency, ...] = ()
    validators: Mapping[GroupVersionKind, SchemaValidator] = field(
        default_factory=dict, compare=False, repr=False
    )

    def __post_init__(self):
        object.__setattr__(self, "dependencies", tuple(self.dependencies))
        object.__setattr__(self, "validators", MappingProxyType(dict(self.validators)))

    def __str__(self) -> str:
        return f"{self.name}@{self.version} ({self.digest})"
