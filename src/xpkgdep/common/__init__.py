"""Shared helpers: logging and in-process caching."""
