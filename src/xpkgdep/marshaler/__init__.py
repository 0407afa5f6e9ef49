"""Package content parsing."""

from .package import PackageImage, ParsedPackage, SchemaValidator
from .xpkg import Marshaler

__all__ = ["Marshaler", "PackageImage", "ParsedPackage", "SchemaValidator"]
