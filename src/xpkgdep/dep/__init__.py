"""Dependency identities and their parsing."""

from .models import Dependency, GroupVersionKind
from .parser import parse_cli_token, parse_depends_on, split_reference, tokenize_reference

__all__ = [
    "Dependency",
    "GroupVersionKind",
    "parse_cli_token",
    "parse_depends_on",
    "split_reference",
    "tokenize_reference",
]
