"""Registry access: version selection and the OCI image resolver."""

from .image import Resolver
from .versions import pick_version

__all__ = ["Resolver", "pick_version"]
