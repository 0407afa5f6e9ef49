"""Runtime configuration: YAML config file plus CLI overrides.

Values land on ``Constants`` so every module reads one source of truth.
Precedence, highest first: CLI flags, config file, built-in defaults.
Loading never raises; problems are logged and the defaults stay in place.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Optional, Tuple

import yaml

from .constants import Constants

logger = logging.getLogger(__name__)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("1", "true", "yes", "on"):
        return True
    if isinstance(value, str) and value.strip().lower() in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def _positive_int(value: Any) -> int:
    n = int(value)
    if n < 1:
        raise ValueError(f"must be >= 1, got {n}")
    return n


def _optional_seconds(value: Any) -> Optional[float]:
    if value is None:
        return None
    n = float(value)
    if n <= 0:
        raise ValueError(f"must be > 0, got {n}")
    return n


# config key -> (Constants attribute, converter)
CONFIG_KEYS: Dict[str, Tuple[str, Callable[[Any], Any]]] = {
    "registry": ("DEFAULT_REGISTRY", str),
    "cache_dir": ("CACHE_DIR", lambda v: os.path.expanduser(str(v))),
    "timeout": ("RESOLVE_TIMEOUT", _optional_seconds),
    "request_timeout": ("REQUEST_TIMEOUT", _positive_int),
    "max_concurrency": ("MAX_CONCURRENCY", _positive_int),
    "insecure": ("INSECURE_REGISTRY", _to_bool),
    "tag_cache_ttl": ("TAG_CACHE_TTL_SEC", int),
}

# argparse dest -> config key
_CLI_KEYS = {
    "REGISTRY": "registry",
    "CACHE_DIR": "cache_dir",
    "TIMEOUT": "timeout",
    "MAX_CONCURRENCY": "max_concurrency",
    "INSECURE": "insecure",
}


def config_path(explicit: Optional[str] = None) -> str:
    """Return the config file to use: explicit path, then XPKGDEP_CONFIG, then the default."""
    if explicit:
        return os.path.expanduser(explicit)
    env = os.environ.get(Constants.ENV_CONFIG)
    if env and env.strip():
        return os.path.expanduser(env.strip())
    return Constants.CONFIG_FILE


def load_config(path: Optional[str] = None) -> Dict[str, Any]:
    """Load the config file as a dict; empty when missing or unreadable.

    Args:
        path: Explicit config path; see config_path for the fallbacks.
    """
    target = config_path(path)
    if not os.path.isfile(target):
        if path:
            logger.warning("Config file not found: %s", target)
        return {}
    try:
        with open(target, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Failed to load config %s: %s", target, e)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.error("Config %s must be a mapping, got %s", target, type(data).__name__)
        return {}
    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        logger.warning("Ignoring unknown config keys in %s: %s", target, ", ".join(unknown))
    return {k: v for k, v in data.items() if k in CONFIG_KEYS}


def apply_config(cfg: Dict[str, Any]) -> None:
    """Apply config values onto Constants; invalid values are logged and skipped."""
    for key, value in cfg.items():
        if key not in CONFIG_KEYS:
            continue
        attr, convert = CONFIG_KEYS[key]
        try:
            setattr(Constants, attr, convert(value))
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring invalid config value %s=%r: %s", key, value, e)


def apply_cli_overrides(args: Any) -> None:
    """Apply CLI flags onto Constants; they take precedence over the config file."""
    overrides = {}
    for dest, key in _CLI_KEYS.items():
        value = getattr(args, dest, None)
        if value is None or value is False:
            continue
        overrides[key] = value
    apply_config(overrides)
