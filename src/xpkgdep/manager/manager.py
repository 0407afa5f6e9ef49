"""Dependency manager: resolves packages and their transitive dependencies.

For every dependency the manager finalizes the version constraint, checks
the cache, verifies a cached entry against the registry's current digest,
fetches and re-parses when stale or missing, and then walks the package's
declared dependencies depth-first. All state of a resolution lives in a
per-call run object; a Manager may be shared between concurrent callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from ..cache.local import LocalCache
from ..common.logging_utils import Timer, extra_context, is_debug_enabled
from ..constants import Constants
from ..dep.models import Dependency
from ..errors import Cancelled, CyclicDependency, NotFound, Timeout
from ..marshaler.package import ParsedPackage
from ..marshaler.xpkg import Marshaler
from ..resolver.image import Resolver
from .interfaces import Cache, ImageResolver, XpkgMarshaler
from .snapshot import Snapshot

logger = logging.getLogger(__name__)

Key = Tuple[str, str]


def _key(dep: Dependency) -> Key:
    return dep.package, dep.constraints


def _label(key: Key) -> str:
    return f"{key[0]}@{key[1]}"


class _Run:
    """State owned by a single resolution run."""

    def __init__(self, max_concurrency: int):
        self.accumulator: List[ParsedPackage] = []
        # finalized identity -> package retrieved (and verified) during this run
        self.packages: Dict[Key, ParsedPackage] = {}
        # identities already appended to the accumulator and walked
        self.done: Set[Key] = set()
        self.semaphore = asyncio.Semaphore(max_concurrency)
        self._locks: Dict[Key, asyncio.Lock] = {}

    def lock(self, key: Key) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


class Manager:
    """Resolves dependency closures against a registry through a local cache."""

    def __init__(
        self,
        cache: Optional[Cache] = None,
        resolver: Optional[ImageResolver] = None,
        marshaler: Optional[XpkgMarshaler] = None,
        *,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ):
        """Initialize the manager.

        Args:
            cache: Package cache; defaults to a LocalCache under Constants.CACHE_DIR.
            resolver: Image resolver; defaults to the OCI registry Resolver.
            marshaler: Package marshaler; defaults to Marshaler.
            timeout: Deadline in seconds for each resolver call; None for no deadline.
            max_concurrency: Upper bound on sibling dependencies retrieved at once.
        """
        self._cache = cache if cache is not None else LocalCache()
        # only a resolver built here is stopped by close()
        self._owned_resolver: Optional[Resolver] = None
        if resolver is None:
            resolver = self._owned_resolver = Resolver()
        self._resolver = resolver
        self._marshaler = marshaler if marshaler is not None else Marshaler()
        self._timeout = timeout if timeout is not None else Constants.RESOLVE_TIMEOUT
        self._max_concurrency = max(1, max_concurrency or Constants.MAX_CONCURRENCY)

    async def close(self) -> None:
        """Stop the default resolver's HTTP session; injected resolvers are left to their owner."""
        if self._owned_resolver is not None:
            await self._owned_resolver.stop()

    async def __aenter__(self) -> "Manager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def resolve(self, dep: Dependency) -> Tuple[Dependency, List[ParsedPackage]]:
        """Resolve a dependency and its transitive closure.

        Returns:
            The dependency with type and concrete version populated, and every
            package of the closure in encounter order (root first).
        """
        run = _Run(self._max_concurrency)
        try:
            resolved = await self._walk(run, dep)
        except asyncio.CancelledError as e:
            raise Cancelled(f"resolution of {dep} was cancelled", dependency=dep) from e
        return resolved, list(run.accumulator)

    async def snapshot(self, deps: Iterable[Dependency]) -> Snapshot:
        """Resolve several root dependencies and merge their validators.

        All roots share one run, so a package reachable from several roots is
        retrieved once.
        """
        run = _Run(self._max_concurrency)
        with Timer() as t:
            try:
                for dep in deps:
                    await self._walk(run, dep)
            except asyncio.CancelledError as e:
                raise Cancelled("snapshot resolution was cancelled") from e
        snap = Snapshot.from_packages(run.accumulator)
        logger.info(
            "Built snapshot of %d types from %d packages",
            len(snap),
            len(run.accumulator),
            extra=extra_context(
                event="snapshot", component="manager", action="snapshot", duration_ms=t.duration_ms()
            ),
        )
        return snap

    async def _walk(self, run: _Run, root: Dependency) -> Dependency:
        """Depth-first walk from one root using an explicit stack."""
        finalized, pkg = await self._retrieve(run, root)
        resolved = Dependency(package=root.package, constraints=pkg.version, type=pkg.type)
        root_key = _key(finalized)
        if root_key in run.done:
            return resolved
        self._accept(run, root_key, pkg)

        path: List[Key] = [root_key]
        stack: List[Iterator[Tuple[Dependency, ParsedPackage]]] = [
            iter(await self._retrieve_all(run, pkg.dependencies))
        ]
        while stack:
            child = next(stack[-1], None)
            if child is None:
                stack.pop()
                path.pop()
                continue
            child_dep, child_pkg = child
            child_key = _key(child_dep)
            if child_key in path:
                cycle = path[path.index(child_key):] + [child_key]
                raise CyclicDependency(_label(k) for k in cycle)
            if child_key in run.done:
                continue
            self._accept(run, child_key, child_pkg)
            path.append(child_key)
            stack.append(iter(await self._retrieve_all(run, child_pkg.dependencies)))
        return resolved

    @staticmethod
    def _accept(run: _Run, key: Key, pkg: ParsedPackage) -> None:
        run.done.add(key)
        run.accumulator.append(pkg)

    async def _retrieve_all(
        self, run: _Run, deps: Sequence[Dependency]
    ) -> List[Tuple[Dependency, ParsedPackage]]:
        """Retrieve sibling dependencies with bounded concurrency.

        Results keep declared order; the first failure in declared order is raised.
        """
        if not deps:
            return []

        async def _one(d: Dependency) -> Tuple[Dependency, ParsedPackage]:
            async with run.semaphore:
                return await self._retrieve(run, d)

        results = await asyncio.gather(*(_one(d) for d in deps), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results  # type: ignore[return-value]

    async def _retrieve(self, run: _Run, dep: Dependency) -> Tuple[Dependency, ParsedPackage]:
        """Finalize a dependency and return it with its verified package."""
        version = await self._call("resolve_tag", self._resolver.resolve_tag, dep)
        finalized = dep.finalize(version)
        key = _key(finalized)
        pkg = run.packages.get(key)
        if pkg is not None:
            return finalized, pkg
        async with run.lock(key):
            pkg = run.packages.get(key)
            if pkg is None:
                pkg = await self._load(finalized)
                run.packages[key] = pkg
        return finalized, pkg

    async def _load(self, dep: Dependency) -> ParsedPackage:
        """Serve a finalized dependency from cache if its digest is current, else fetch it."""
        try:
            cached = self._cache.get(dep)
        except NotFound:
            self._trace("cache_miss", dep)
            return await self._add(dep)

        digest = await self._call("resolve_digest", self._resolver.resolve_digest, dep)
        if cached.digest != digest:
            self._trace("digest_mismatch", dep, cached=cached.digest, current=digest)
            return await self._add(dep)
        self._trace("cache_fresh", dep, digest=digest)
        return cached

    async def _add(self, dep: Dependency) -> ParsedPackage:
        """Fetch, parse and cache a finalized dependency."""
        image = await self._call("fetch", self._resolver.fetch, dep)
        pkg = self._marshaler.parse(image)
        self._cache.store(dep, pkg)
        logger.info("Fetched %s (%s)", dep, pkg.digest)
        return pkg

    async def _call(self, op: str, fn: Callable[[Dependency], Awaitable[Any]], dep: Dependency) -> Any:
        """Await one resolver call under the configured deadline."""
        try:
            if self._timeout is None:
                return await fn(dep)
            return await asyncio.wait_for(fn(dep), self._timeout)
        except asyncio.TimeoutError as e:
            raise Timeout(f"{op} for {dep} exceeded {self._timeout}s", dependency=dep) from e
        except asyncio.CancelledError as e:
            raise Cancelled(f"{op} for {dep} was cancelled", dependency=dep) from e

    def _trace(self, outcome: str, dep: Dependency, **fields: Any) -> None:
        if is_debug_enabled(logger):
            logger.debug(
                "Cache decision",
                extra=extra_context(
                    event="decision",
                    component="manager",
                    action="retrieve",
                    outcome=outcome,
                    package=dep.package,
                    version=dep.constraints,
                    **fields,
                ),
            )
