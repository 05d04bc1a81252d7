"""Helpers for working with CPE 2.3 formatted strings."""

import re

MATCH_CPE_23_RE = re.compile(r"cpe:2\.3:[aoh](:[^:]+){2,10}")
CPE_FIELD_COUNT = 13
EMPTY_FIELDS = ("*", "-", "")


def is_cpe_string(query: str) -> bool:
    """Return True if the query is written in the CPE 2.3 grammar."""
    return bool(MATCH_CPE_23_RE.match(query.strip()))


def pad_cpe(cpe: str) -> str:
    """Fill up missing trailing fields with wildcards."""
    parts = cpe.split(":")
    if len(parts) < CPE_FIELD_COUNT:
        cpe += ":*" * (CPE_FIELD_COUNT - len(parts))
    return cpe


def get_cpe_prefix(cpe: str) -> str:
    """Return the product prefix, e.g. ``cpe:2.3:a:vendor:product:``."""
    return ":".join(cpe.split(":")[:5]) + ":"


def get_cpe_field(cpe: str, index: int, default: str = "*") -> str:
    parts = cpe.split(":")
    if index < len(parts):
        return parts[index]
    return default


def get_cpe_version(cpe: str) -> str:
    return get_cpe_field(cpe, 5)


def has_concrete_version(cpe: str) -> bool:
    return get_cpe_version(cpe) not in EMPTY_FIELDS


def is_cpe_equal(cpe1: str, cpe2: str) -> bool:
    """Compare two CPEs field by field, a ``*`` on either side matches anything."""
    parts1 = cpe1.split(":")
    parts2 = cpe2.split(":")

    for field1, field2 in zip(parts1, parts2):
        if field1 != field2 and field1 != "*" and field2 != "*":
            return False
    return True


def cpe_matches_prefix(query_cpe: str, vuln_cpe: str) -> bool:
    """Check that part, vendor and product of both CPEs agree."""
    query_parts = query_cpe.split(":")
    vuln_parts = vuln_cpe.split(":")
    if len(query_parts) < 5 or len(vuln_parts) < 5:
        return False

    for i in range(5):
        if vuln_parts[i] == "*":
            continue
        if query_parts[i] != vuln_parts[i]:
            return False
    return True


def prefix_range_upper_bound(prefix: str) -> str:
    """Exclusive upper bound for a string range scan over ``prefix``.

    Prefixes end with ``:``, and ``;`` is the next character, so
    ``cpe >= prefix AND cpe < bound`` selects exactly the CPEs under it.
    """
    return prefix[:-1] + chr(ord(prefix[-1]) + 1)
