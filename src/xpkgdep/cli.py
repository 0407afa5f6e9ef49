"""xpkgdep command line entry point.

Resolves package dependencies through the local cache and prints results as
JSON on stdout. Errors are logged and mapped to ExitCodes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .args import parse_args
from .cache.local import LocalCache
from .common.logging_utils import configure_logging, extra_context, is_debug_enabled
from .config import apply_cli_overrides, apply_config, load_config
from .constants import Constants, ExitCodes
from .dep.models import Dependency
from .dep.parser import parse_cli_token
from .errors import Cancelled, CacheError, DependencyError, Timeout
from .manager.manager import Manager
from .marshaler.package import ParsedPackage
from .marshaler.xpkg import Marshaler
from .resolver.image import Resolver

logger = logging.getLogger(__name__)


def package_summary(pkg: ParsedPackage) -> Dict[str, Any]:
    """JSON-friendly description of a resolved package."""
    return {
        "name": pkg.name,
        "type": pkg.type.value,
        "version": pkg.version,
        "digest": pkg.digest,
        "dependencies": [str(d) for d in pkg.dependencies],
        "types": sorted(str(gvk) for gvk in pkg.validators),
    }


def load_manifests(path: str) -> List[Dict[str, Any]]:
    """Read every mapping document of a YAML file."""
    with open(path, encoding="utf-8") as fh:
        return [d for d in yaml.safe_load_all(fh) if isinstance(d, dict)]


async def run_command(
    action: str,
    manager: Manager,
    deps: List[Dependency],
    manifests: Optional[List[Dict[str, Any]]] = None,
) -> Tuple[ExitCodes, Dict[str, Any]]:
    """Execute a subcommand against a manager; return (exit code, JSON output)."""
    if action == "resolve":
        resolved, packages = await manager.resolve(deps[0])
        return ExitCodes.SUCCESS, {
            "dependency": resolved.to_dict(),
            "packages": [package_summary(p) for p in packages],
        }

    snap = await manager.snapshot(deps)
    if action == "snapshot":
        return ExitCodes.SUCCESS, {"types": [str(gvk) for gvk in snap.gvks()]}

    results = []
    failed = False
    for obj in manifests or []:
        errors = snap.validate(obj)
        failed = failed or bool(errors)
        results.append({
            "apiVersion": obj.get("apiVersion"),
            "kind": obj.get("kind"),
            "name": (obj.get("metadata") or {}).get("name"),
            "errors": errors,
        })
    code = ExitCodes.VALIDATION_FAILED if failed else ExitCodes.SUCCESS
    return code, {"results": results}


async def _run(args, cache: LocalCache, deps: List[Dependency], manifests) -> Tuple[ExitCodes, Dict[str, Any]]:
    async with Resolver(registry=Constants.DEFAULT_REGISTRY) as resolver:
        manager = Manager(
            cache,
            resolver,
            Marshaler(),
            timeout=Constants.RESOLVE_TIMEOUT,
            max_concurrency=Constants.MAX_CONCURRENCY,
        )
        return await run_command(args.action, manager, deps, manifests)


def main(argv=None) -> int:
    """Main function of the program."""
    args = parse_args(argv)
    configure_logging(args.LOG_LEVEL)
    apply_config(load_config(args.CONFIG))
    apply_cli_overrides(args)

    if is_debug_enabled(logger):
        logger.debug(
            "CLI start",
            extra=extra_context(event="function_entry", component="cli", action=args.action),
        )

    cache = LocalCache(Constants.CACHE_DIR, Constants.DEFAULT_REGISTRY)
    try:
        if args.CLEAN_CACHE:
            cache.clean()
        deps = [parse_cli_token(t) for t in args.PACKAGES]
        manifests = load_manifests(args.MANIFESTS) if args.action == "validate" else None
    except (OSError, ValueError, yaml.YAMLError, CacheError) as e:
        logger.error("%s", e)
        return ExitCodes.FILE_ERROR.value

    try:
        code, output = asyncio.run(_run(args, cache, deps, manifests))
    except (Cancelled, KeyboardInterrupt):
        logger.error("Resolution cancelled")
        return ExitCodes.CANCELLED.value
    except Timeout as e:
        logger.error("%s", e)
        return ExitCodes.CONNECTION_ERROR.value
    except DependencyError as e:
        logger.error("%s", e)
        return ExitCodes.RESOLUTION_ERROR.value

    print(json.dumps(output, indent=2))
    return code.value


if __name__ == "__main__":
    sys.exit(main())
