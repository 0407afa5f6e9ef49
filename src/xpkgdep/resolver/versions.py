"""Constraint-to-tag selection using semantic versioning.

Registry tags and constraints may carry a leading "v" ("v1.2.0",
">=v1.0.0"); it is ignored for comparison and preserved in the returned tag.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

import semantic_version

_V_PREFIX_RE = re.compile(r"(?<![0-9A-Za-z])[vV](?=\d)")
_RANGE_OPS = ["^", "~", "*", "x", "X", " - ", "<", ">", "=", "!", "||", ","]
_PRERELEASE_MARKERS = ["pre", "rc", "alpha", "beta"]

PickResult = Tuple[Optional[str], int, Optional[str]]


def strip_v(s: str) -> str:
    """Drop "v" prefixes in front of version numbers."""
    return _V_PREFIX_RE.sub("", s.strip())


def is_latest(constraint: Optional[str]) -> bool:
    return constraint is None or constraint.strip() == "" or constraint.strip().lower() == "latest"


def is_range(constraint: str) -> bool:
    """Return True when the constraint is a range rather than one exact version."""
    return any(op in constraint for op in _RANGE_OPS)


def _include_prerelease(constraint: str) -> bool:
    return any(pre in constraint.lower() for pre in _PRERELEASE_MARKERS)


def _parse_tags(tags: Iterable[str]) -> Dict[semantic_version.Version, str]:
    """Map parseable tags to their semantic version; first spelling of a version wins."""
    parsed: Dict[semantic_version.Version, str] = {}
    for tag in tags:
        try:
            ver = semantic_version.Version(strip_v(tag))
        except ValueError:
            continue  # Skip non-semver tags such as "latest" or "main"
        parsed.setdefault(ver, tag)
    return parsed


def _normalize_spec(spec_str: str) -> str:
    """Normalize range syntax (commas, hyphen ranges, x-ranges) into SimpleSpec-compatible form."""
    s = strip_v(spec_str)

    # Hyphen ranges: "1.2.3 - 1.4.5" => ">=1.2.3,<=1.4.5"
    m = re.match(r'^\s*([0-9A-Za-z\.\-\+]+)\s+-\s+([0-9A-Za-z\.\-\+]+)\s*$', s)
    if m:
        return f">={m.group(1)},<={m.group(2)}"

    s2 = s.replace('*', 'x').lower()
    m = re.match(r'^\s*(\d+)\.(\d+)\.x\s*$', s2)
    if m:
        major, minor = int(m.group(1)), int(m.group(2))
        return f">={major}.{minor}.0,<{major}.{minor + 1}.0"

    m = re.match(r'^\s*(\d+)(\.x)?\s*$', s2)
    if m:
        major = int(m.group(1))
        return f">={major}.0.0,<{major + 1}.0.0"

    # Comparator lists: ">= 1.0.0, < 2.0.0" => ">=1.0.0,<2.0.0"
    s = re.sub(r'\s*,\s*', ',', s)
    return re.sub(r'([<>=!~^]+)\s+', r'\1', s)


def parse_spec(spec_str: str):
    """Parse a range, preferring NpmSpec and falling back to a normalized SimpleSpec.

    Returns:
        Tuple of (spec, error_message)
    """
    try:
        return semantic_version.NpmSpec(strip_v(spec_str)), None
    except ValueError:
        try:
            return semantic_version.SimpleSpec(_normalize_spec(spec_str)), None
        except ValueError as e:
            return None, f"Invalid semver constraint '{spec_str}': {e}"


def _pick_latest(parsed: Dict[semantic_version.Version, str], count: int) -> PickResult:
    """Pick the highest stable version."""
    if not parsed:
        return None, count, "No valid semantic version tags found"
    stable = sorted((v for v in parsed if not v.prerelease), reverse=True)
    if not stable:
        return None, count, "No stable versions available"
    return parsed[stable[0]], count, None


def _pick_exact(constraint: str, tags: List[str], parsed: Dict[semantic_version.Version, str]) -> PickResult:
    """Pick the tag equal to the constraint, literally or as a semantic version."""
    if constraint in tags:
        return constraint, len(tags), None
    try:
        wanted = semantic_version.Version(strip_v(constraint))
    except ValueError:
        return None, len(tags), f"Version {constraint} not found"
    if wanted in parsed:
        return parsed[wanted], len(tags), None
    return None, len(tags), f"Version {constraint} not found"


def _pick_range(constraint: str, parsed: Dict[semantic_version.Version, str], count: int) -> PickResult:
    """Apply the range and pick the highest matching version."""
    spec, err = parse_spec(constraint)
    if err or spec is None:
        return None, count, err
    include_prerelease = _include_prerelease(constraint)
    matching = [
        v for v in parsed
        if (include_prerelease or not v.prerelease) and spec.match(v)
    ]
    if not matching:
        return None, count, f"No versions match constraint '{constraint}'"
    matching.sort(reverse=True)
    return parsed[matching[0]], count, None


def pick_version(constraint: Optional[str], tags: Iterable[str]) -> PickResult:
    """Select the tag satisfying a constraint.

    Args:
        constraint: Semantic range, exact version, or None/"latest"
        tags: Available tag strings

    Returns:
        Tuple of (selected_tag, candidate_count, error_message)
    """
    tag_list = list(tags)
    if not tag_list:
        return None, 0, "No versions available"
    parsed = _parse_tags(tag_list)
    if is_latest(constraint):
        return _pick_latest(parsed, len(tag_list))
    constraint = constraint.strip()
    if is_range(constraint):
        return _pick_range(constraint, parsed, len(tag_list))
    return _pick_exact(constraint, tag_list, parsed)
