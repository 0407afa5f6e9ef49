"""Parsing of dependency tokens and package metadata entries."""

from typing import Any, Mapping, Optional, Tuple

from ..constants import Constants, PackageType
from ..errors import MalformedPackage
from .models import Dependency

# dependsOn keys that name the referenced package's kind directly
_KIND_KEYS = {
    "provider": PackageType.PROVIDER,
    "configuration": PackageType.CONFIGURATION,
    "function": PackageType.FUNCTION,
}


def tokenize_reference(s: str) -> Tuple[str, Optional[str]]:
    """Return (package, constraint or None) from "pkg@constraint" or "pkg:constraint".

    '@' wins when present. A ':' is only treated as a separator when it comes
    after the last '/', so registry ports ("localhost:5000/org/pkg") survive.
    """
    s = s.strip()
    if "@" in s:
        package, spec = s.rsplit("@", 1)
        return package.strip(), spec.strip() or None
    colon = s.rfind(":")
    if colon > s.rfind("/"):
        return s[:colon].strip(), s[colon + 1:].strip() or None
    return s, None


def parse_cli_token(token: str) -> Dependency:
    """Parse a CLI token into an unfinalized Dependency.

    A missing constraint, or "latest", becomes the default constraint.
    """
    package, spec = tokenize_reference(token)
    if not package:
        raise ValueError(f"empty package reference in {token!r}")
    if spec is None or spec.lower() == "latest":
        spec = Constants.DEFAULT_CONSTRAINT
    return Dependency(package=package, constraints=spec)


def parse_depends_on(entry: Mapping[str, Any]) -> Dependency:
    """Build a Dependency from one ``spec.dependsOn`` item of package metadata.

    Supports both the kind-keyed form (``provider: <ref>``) and the
    ``package`` + ``kind`` form.
    """
    if not isinstance(entry, Mapping):
        raise MalformedPackage(f"dependsOn entry must be a mapping, got {type(entry).__name__}")

    version = entry.get("version")
    constraints = str(version).strip() if version is not None else Constants.DEFAULT_CONSTRAINT

    for key, pkg_type in _KIND_KEYS.items():
        ref = entry.get(key)
        if ref:
            return Dependency(package=str(ref).strip(), constraints=constraints, type=pkg_type)

    ref = entry.get("package")
    if ref:
        return Dependency(
            package=str(ref).strip(),
            constraints=constraints,
            type=PackageType.from_kind(str(entry.get("kind", ""))),
        )
    raise MalformedPackage(f"dependsOn entry names no package: {dict(entry)!r}")


def _looks_like_host(segment: str) -> bool:
    return "." in segment or ":" in segment or segment == "localhost"


def split_reference(package: str, default_registry: Optional[str] = None) -> Tuple[str, str]:
    """Split a package reference into (registry host, repository path).

    References without an explicit host are served by the default registry.
    """
    registry = default_registry or Constants.DEFAULT_REGISTRY
    ref = package.strip().strip("/")
    if not ref:
        raise ValueError("empty package reference")
    first, sep, rest = ref.partition("/")
    if sep and _looks_like_host(first):
        return first, rest
    return registry, ref
