"""Error kinds raised while resolving package dependencies."""

from __future__ import annotations

from typing import Optional


class DependencyError(Exception):
    """Base class for all dependency resolution failures.

    Args:
        message: Human-readable description.
        dependency: Optional Dependency the failure relates to.
    """

    def __init__(self, message: str, dependency: Optional[object] = None):
        super().__init__(message)
        self.dependency = dependency


class ResolutionError(DependencyError):
    """Constraint cannot be satisfied or the registry could not be reached."""


class NotFound(DependencyError):
    """Cache miss. Absorbed by the manager, never surfaced to callers."""


class MalformedPackage(DependencyError):
    """Fetched package content could not be parsed."""


class CacheError(DependencyError):
    """Storage failure other than a missing entry."""


class Timeout(DependencyError):
    """An external call exceeded its deadline. Retryable by the caller."""


class Cancelled(DependencyError):
    """The resolution run was cancelled while an external call was pending."""


class CyclicDependency(DependencyError):
    """A package depends on itself, directly or transitively.

    Args:
        path: Identities (as strings) from the first occurrence back to itself.
    """

    def __init__(self, path):
        self.path = list(path)
        super().__init__("dependency cycle detected: " + " -> ".join(self.path))
