"""xpkgdep - Crossplane package dependency resolver.

Resolves a package's transitive dependency graph against an OCI registry,
reusing a digest-verified local cache, and merges every resolved package's
schema validators into a queryable snapshot.
"""

__version__ = "0.1.0"
