"""On-disk cache of parsed packages keyed by finalized dependency.

Layout: ``<root>/<registry>/<repository path>/<version>.json``. Each entry
holds everything needed to rebuild a ParsedPackage without the registry.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import tempfile
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..common.logging_utils import extra_context, is_debug_enabled
from ..constants import Constants, PackageType
from ..dep.models import Dependency, GroupVersionKind
from ..dep.parser import split_reference
from ..errors import CacheError, NotFound
from ..marshaler.package import ParsedPackage, SchemaValidator

logger = logging.getLogger(__name__)

ENTRY_FORMAT_VERSION = 1
_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._+\-]*$")


def _check_segment(segment: str, dep: Dependency) -> str:
    if not _SEGMENT_RE.match(segment) or segment in (".", ".."):
        raise CacheError(f"{dep}: cannot cache under path segment {segment!r}", dependency=dep)
    return segment


def encode_package(pkg: ParsedPackage) -> Dict[str, Any]:
    """Serialize a ParsedPackage into a JSON-compatible dict."""
    return {
        "formatVersion": ENTRY_FORMAT_VERSION,
        "name": pkg.name,
        "type": pkg.type.value,
        "version": pkg.version,
        "digest": pkg.digest,
        "dependencies": [d.to_dict() for d in pkg.dependencies],
        "validators": [
            {"group": gvk.group, "version": gvk.version, "kind": gvk.kind, "schema": v.schema}
            for gvk, v in pkg.validators.items()
        ],
    }


def decode_package(data: Dict[str, Any]) -> ParsedPackage:
    """Rebuild a ParsedPackage from encode_package output."""
    if data.get("formatVersion") != ENTRY_FORMAT_VERSION:
        raise ValueError(f"unsupported cache entry format {data.get('formatVersion')!r}")
    validators = {
        GroupVersionKind(v["group"], v["version"], v["kind"]): SchemaValidator(v["schema"])
        for v in data.get("validators", [])
    }
    return ParsedPackage(
        name=data["name"],
        type=PackageType.from_kind(data.get("type", "")),
        version=data["version"],
        digest=data["digest"],
        dependencies=tuple(Dependency.from_dict(d) for d in data.get("dependencies", [])),
        validators=validators,
    )


class LocalCache:
    """Filesystem-backed package cache.

    Writes are atomic (temporary file, then rename) and serialized, so the
    last completed store for an identity wins.
    """

    def __init__(self, root: Optional[str] = None, registry: Optional[str] = None):
        """Initialize the cache.

        Args:
            root: Cache directory; defaults to Constants.CACHE_DIR.
            registry: Registry host assumed for references without one.
        """
        self._root = os.path.abspath(os.path.expanduser(root or Constants.CACHE_DIR))
        self._registry = registry or Constants.DEFAULT_REGISTRY
        self._write_lock = threading.Lock()

    @property
    def root(self) -> str:
        return self._root

    def path_for(self, dep: Dependency) -> str:
        """Return the entry path of a finalized dependency."""
        if not dep.constraints:
            raise CacheError(f"{dep}: dependency has no version", dependency=dep)
        try:
            host, repo = split_reference(dep.package, self._registry)
        except ValueError as e:
            raise CacheError(str(e), dependency=dep) from e
        parts = [_check_segment(host.replace(":", "_"), dep)]
        parts.extend(_check_segment(p, dep) for p in repo.split("/"))
        filename = _check_segment(dep.constraints, dep) + ".json"
        return os.path.join(self._root, *parts, filename)

    def get(self, dep: Dependency) -> ParsedPackage:
        """Return the cached package for a finalized dependency.

        Raises:
            NotFound: no entry exists.
            CacheError: the entry cannot be read or decoded.
        """
        path = self.path_for(dep)
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError as e:
            raise NotFound(f"{dep}: not in cache", dependency=dep) from e
        except (OSError, ValueError) as e:
            raise CacheError(f"{dep}: unreadable cache entry {path}: {e}", dependency=dep) from e
        try:
            pkg = decode_package(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CacheError(f"{dep}: corrupt cache entry {path}: {e}", dependency=dep) from e
        if is_debug_enabled(logger):
            logger.debug(
                "Cache hit",
                extra=extra_context(
                    event="cache_hit", component="cache", action="get", target=path, digest=pkg.digest
                ),
            )
        return pkg

    def store(self, dep: Dependency, pkg: ParsedPackage) -> None:
        """Write (or overwrite) the entry for a finalized dependency."""
        path = self.path_for(dep)
        payload = json.dumps(encode_package(pkg), sort_keys=True)
        directory = os.path.dirname(path)
        with self._write_lock:
            try:
                os.makedirs(directory, exist_ok=True)
                fd, tmp = tempfile.mkstemp(dir=directory, prefix=".entry-", suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as fh:
                        fh.write(payload)
                    os.replace(tmp, path)
                except BaseException:
                    if os.path.exists(tmp):
                        os.unlink(tmp)
                    raise
            except OSError as e:
                raise CacheError(f"{dep}: failed to store cache entry {path}: {e}", dependency=dep) from e
        if is_debug_enabled(logger):
            logger.debug(
                "Cache store",
                extra=extra_context(
                    event="cache_store", component="cache", action="store", target=path, digest=pkg.digest
                ),
            )

    def entries(self) -> List[Tuple[str, str]]:
        """List cached (entry directory relative to root, version) pairs."""
        found: List[Tuple[str, str]] = []
        if not os.path.isdir(self._root):
            return found
        for dirpath, _, filenames in os.walk(self._root):
            for name in filenames:
                if name.endswith(".json") and not name.startswith("."):
                    rel = os.path.relpath(dirpath, self._root).replace(os.sep, "/")
                    found.append((rel, name[: -len(".json")]))
        return sorted(found)

    def clean(self) -> int:
        """Remove every cache entry; return how many were removed."""
        with self._write_lock:
            removed = len(self.entries())
            try:
                if os.path.isdir(self._root):
                    shutil.rmtree(self._root)
            except OSError as e:
                raise CacheError(f"failed to clean cache {self._root}: {e}") from e
        logger.info("Cleaned %d package cache entries at %s", removed, self._root)
        return removed
