"""Constants used in the project."""

import os
from enum import Enum


class ExitCodes(Enum):
    """Exit codes for the program.

    Args:
        Enum (int): Exit codes for the program.
    """

    SUCCESS = 0
    FILE_ERROR = 1
    CONNECTION_ERROR = 2
    RESOLUTION_ERROR = 3
    CANCELLED = 4
    VALIDATION_FAILED = 5


class PackageType(Enum):
    """Kinds of packages a registry can serve.

    Args:
        Enum (string): Package kind as spelled in package metadata.
    """

    UNKNOWN = ""
    PROVIDER = "Provider"
    CONFIGURATION = "Configuration"
    FUNCTION = "Function"

    @classmethod
    def from_kind(cls, kind: str) -> "PackageType":
        """Map a metadata kind (case-insensitive) to a PackageType."""
        if not kind:
            return cls.UNKNOWN
        for member in cls:
            if member.value.lower() == kind.strip().lower():
                return member
        return cls.UNKNOWN


class Constants:  # pylint: disable=too-few-public-methods
    """General constants used in the project.
    Data holder for configuration constants; not intended to provide behavior.
    Values may be overridden at runtime by xpkgdep.config.
    """

    DEFAULT_REGISTRY = "xpkg.upbound.io"
    DEFAULT_CONSTRAINT = ">=v0.0.0"
    CACHE_DIR = os.path.join(os.path.expanduser("~"), ".xpkgdep", "cache")
    CONFIG_FILE = os.path.join(os.path.expanduser("~"), ".xpkgdep", "config.yaml")
    ENV_CONFIG = "XPKGDEP_CONFIG"
    ENV_LOG_LEVEL = "XPKGDEP_LOG_LEVEL"
    LOG_FORMAT = "[%(levelname)s] %(message)s"
    REQUEST_TIMEOUT = 30  # Timeout in seconds for all HTTP requests
    RESOLVE_TIMEOUT = None  # Per external call deadline in seconds, None = unbounded
    MAX_CONCURRENCY = 4
    INSECURE_REGISTRY = False
    TAG_CACHE_TTL_SEC = 60
    USER_AGENT = "xpkgdep/0.1"

    # Package content layout
    PACKAGE_FILE = "package.yaml"
    META_API_GROUP = "meta.pkg.crossplane.io"
    CRD_KIND = "CustomResourceDefinition"
    XRD_KIND = "CompositeResourceDefinition"
    XPKG_LAYER_ANNOTATION = "io.crossplane.xpkg"
    XPKG_BASE_LAYER = "base"

    MANIFEST_MEDIA_TYPES = [
        "application/vnd.oci.image.manifest.v1+json",
        "application/vnd.docker.distribution.manifest.v2+json",
    ]
