"""Package marshaler: package image layer -> ParsedPackage.

The package layer is a tar archive (plain or gzipped) containing
package.yaml, a YAML stream made of one package metadata document followed
by the CRDs and XRDs the package installs.
"""

from __future__ import annotations

import io
import logging
import tarfile
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import yaml

from ..constants import Constants, PackageType
from ..dep.models import Dependency, GroupVersionKind
from ..dep.parser import parse_depends_on
from ..errors import MalformedPackage
from ..common.logging_utils import extra_context, is_debug_enabled
from .package import PackageImage, ParsedPackage, SchemaValidator

logger = logging.getLogger(__name__)


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    """Return value as a mapping; None reads as empty."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedPackage(f"{what} must be a mapping, got {type(value).__name__}")
    return value


def _versions(spec: Mapping[str, Any], where: str) -> List[Tuple[str, Mapping[str, Any]]]:
    """(version name, openAPIV3Schema) for every served version that carries a schema."""
    versions = spec.get("versions") or []
    if not isinstance(versions, list):
        raise MalformedPackage(f"{where}: spec.versions must be a list")
    out = []
    for ver in versions:
        ver = _mapping(ver, f"{where}: spec.versions entry")
        schema = _mapping(ver.get("schema"), f"{where}: schema").get("openAPIV3Schema")
        if ver.get("name") and isinstance(schema, Mapping):
            out.append((str(ver["name"]), schema))
    return out


def _crd_validators(doc: Mapping[str, Any]) -> Dict[GroupVersionKind, SchemaValidator]:
    """Validators for every version of a CustomResourceDefinition that has a schema."""
    where = f"CRD {_doc_name(doc)!r}"
    spec = _mapping(doc.get("spec"), f"{where}: spec")
    group = str(spec.get("group", ""))
    kind = _mapping(spec.get("names"), f"{where}: spec.names").get("kind")
    if not kind:
        raise MalformedPackage(f"{where} has no spec.names.kind")
    return {
        GroupVersionKind(group, name, str(kind)): SchemaValidator(schema)
        for name, schema in _versions(spec, where)
    }


def _xrd_validators(doc: Mapping[str, Any]) -> Dict[GroupVersionKind, SchemaValidator]:
    """Validators for the composite kind of an XRD, and for its claim kind if offered."""
    where = f"XRD {_doc_name(doc)!r}"
    spec = _mapping(doc.get("spec"), f"{where}: spec")
    group = str(spec.get("group", ""))
    kinds = [
        _mapping(spec.get("names"), f"{where}: spec.names").get("kind"),
        _mapping(spec.get("claimNames"), f"{where}: spec.claimNames").get("kind"),
    ]
    if not kinds[0]:
        raise MalformedPackage(f"{where} has no spec.names.kind")
    out: Dict[GroupVersionKind, SchemaValidator] = {}
    for name, schema in _versions(spec, where):
        for kind in kinds:
            if kind:
                out[GroupVersionKind(group, name, str(kind))] = SchemaValidator(schema)
    return out


def _doc_name(doc: Mapping[str, Any]) -> str:
    metadata = doc.get("metadata")
    return str(metadata.get("name", "")) if isinstance(metadata, Mapping) else ""


def _is_meta(doc: Mapping[str, Any]) -> bool:
    api_version = doc.get("apiVersion")
    return isinstance(api_version, str) and api_version.startswith(Constants.META_API_GROUP + "/")


class Marshaler:
    """Converts fetched package content into ParsedPackage objects."""

    def __init__(self, package_file: str = Constants.PACKAGE_FILE):
        self._package_file = package_file

    def parse(self, image: PackageImage) -> ParsedPackage:
        """Parse a fetched package image.

        Raises:
            MalformedPackage: if the layer is not a readable archive, lacks
                package.yaml, or the YAML is invalid.
        """
        contents = self._extract(image.layer)
        return self.from_yaml(contents, name=image.package, version=image.tag, digest=image.digest)

    def from_yaml(self, contents: bytes, *, name: str, version: str, digest: str) -> ParsedPackage:
        """Build a ParsedPackage from a package.yaml stream."""
        try:
            docs = [d for d in yaml.safe_load_all(contents) if d is not None]
        except yaml.YAMLError as e:
            raise MalformedPackage(f"invalid {self._package_file} in {name}: {e}") from e

        meta: Optional[Mapping[str, Any]] = None
        validators: Dict[GroupVersionKind, SchemaValidator] = {}
        for doc in docs:
            if not isinstance(doc, Mapping):
                raise MalformedPackage(f"{name}: every document must be a mapping")
            if _is_meta(doc):
                if meta is not None:
                    raise MalformedPackage(f"{name}: more than one package metadata document")
                meta = doc
            elif doc.get("kind") == Constants.CRD_KIND:
                validators.update(_crd_validators(doc))
            elif doc.get("kind") == Constants.XRD_KIND:
                validators.update(_xrd_validators(doc))

        if meta is None:
            raise MalformedPackage(f"{name}: no {Constants.META_API_GROUP} metadata document")
        pkg_type = PackageType.from_kind(str(meta.get("kind", "")))
        if pkg_type is PackageType.UNKNOWN:
            raise MalformedPackage(f"{name}: unsupported package kind {meta.get('kind')!r}")

        meta_spec = _mapping(meta.get("spec"), f"{name}: metadata spec")
        deps = self._dependencies(meta_spec.get("dependsOn") or [])

        if is_debug_enabled(logger):
            logger.debug(
                "Parsed package",
                extra=extra_context(
                    event="parse",
                    component="marshaler",
                    action="from_yaml",
                    outcome="success",
                    package=name,
                    version=version,
                    dependencies=len(deps),
                    validators=len(validators),
                ),
            )
        return ParsedPackage(
            name=name,
            type=pkg_type,
            version=version,
            digest=digest,
            dependencies=tuple(deps),
            validators=validators,
        )

    def _dependencies(self, entries: Iterable[Any]) -> List[Dependency]:
        if not isinstance(entries, list):
            raise MalformedPackage("spec.dependsOn must be a list")
        return [parse_depends_on(e) for e in entries]

    def _extract(self, layer: bytes) -> bytes:
        """Read package.yaml out of the layer archive."""
        try:
            with tarfile.open(fileobj=io.BytesIO(layer), mode="r:*") as tar:
                for member in tar.getmembers():
                    if member.isfile() and member.name.lstrip("./") == self._package_file:
                        fh = tar.extractfile(member)
                        if fh is not None:
                            return fh.read()
        except (tarfile.TarError, EOFError, OSError) as e:
            raise MalformedPackage(f"unreadable package layer: {e}") from e
        raise MalformedPackage(f"package layer has no {self._package_file}")
