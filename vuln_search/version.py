"""Version parsing and comparison for CPE version fields."""

import re
from typing import List, Optional, Union

VERSION_SPLIT_RE = re.compile(r"[.\-_]")
VERSION_SECTION_RE = re.compile(r"([a-zA-Z\.]+|[\d\.]+)")

VersionSegment = Union[int, str]
VersionInput = Union[str, int, float, None]


def parse_version(version: VersionInput) -> List[VersionSegment]:
    """Split a version into integer and lowercase string segments.

    Numbers are accepted as well, so ``parse_version(2024)`` and
    ``parse_version("2024")`` yield the same result. ``None``, the empty
    string and ``*`` parse to an empty list.
    """
    if version is None or isinstance(version, bool):
        return []
    version = str(version).strip()
    if not version or version == "*":
        return []

    segments: List[VersionSegment] = []
    for part in VERSION_SPLIT_RE.split(version):
        if part.isascii() and part.isdigit() and str(int(part)) == part:
            segments.append(int(part))
        else:
            segments.append(part.lower())
    return segments


def _as_segments(version: Union[VersionInput, List[VersionSegment]]) -> List[VersionSegment]:
    if isinstance(version, list):
        return version
    return parse_version(version)


def compare_versions(first, second) -> int:
    """Compare two versions, returning -1, 0 or 1.

    Either argument may be a raw version or an already parsed segment list.
    The shorter side is padded with zeros, so ``1.0`` equals ``1.0.0``.
    """
    left = _as_segments(first)
    right = _as_segments(second)

    for i in range(max(len(left), len(right))):
        a = left[i] if i < len(left) else 0
        b = right[i] if i < len(right) else 0

        if isinstance(a, int) and isinstance(b, int):
            if a != b:
                return -1 if a < b else 1
            continue

        # mixed or textual segments are compared by their string form
        a_str, b_str = str(a), str(b)
        if a_str != b_str:
            return -1 if a_str < b_str else 1

    return 0


def is_version_in_range(
    version: VersionInput,
    start: Optional[str],
    start_including: bool,
    end: Optional[str],
    end_including: bool,
) -> bool:
    """Check whether a version lies between two optional bounds.

    An empty or wildcard bound leaves that side open. An empty or wildcard
    version never matches.
    """
    parsed = parse_version(version)
    if not parsed:
        return False

    if start and start != "*":
        cmp = compare_versions(parsed, start)
        if cmp < 0 or (cmp == 0 and not start_including):
            return False

    if end and end != "*":
        cmp = compare_versions(parsed, end)
        if cmp > 0 or (cmp == 0 and not end_including):
            return False

    return True


def get_version_sections(version: Optional[str]) -> List[str]:
    """Split a version into alternating letter and number runs, e.g. ``7.4p1`` -> ``['7.4', 'p', '1']``."""
    if not version or version in ("*", "-"):
        return []
    return VERSION_SECTION_RE.findall(version)
