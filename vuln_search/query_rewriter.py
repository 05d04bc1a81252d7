"""Alternative phrasings of free-text product queries.

The CPE corpus often names a product differently than users do, e.g.
``httpd`` vs. ``http_server`` or ``moment.js`` vs. ``momentjs``. Every rule
below adds zero or more alternative queries. Rules never replace or reorder
what an earlier rule produced.
"""

import re
import string
from typing import Dict, Iterable, List

VERSION_MATCH_ZE_RE = re.compile(r"\b([\d]+\.?){1,4}\b")
VERSION_MATCH_CPE_CREATION_RE = re.compile(
    r"\b((\d[\da-zA-Z\.]{0,6})([\+\-\.\_\~ ][\da-zA-Z\.]+){0,4})[^\w\n]*$"
)
VERSION_PART_SPLIT_RE = re.compile(r"[\+\-\_\~ ]")
ALT_QUERY_MAXSPLIT = 1

POPULAR_QUERY_CORRECTIONS = {
    "flask": "palletsprojects",
    "keycloak": "redhat red hat",
    "rabbitmq": "vmware",
    "bootstrap": "getbootstrap",
    "kotlin": "jetbrains",
    "spring boot": "vmware",
    "debian": "linux",
    "ansible": "redhat",
    "twig": "symfony",
    "proxmox ve": "virtual environment",
    "nextjs": "vercel",
    "next.js": "vercel",
    "ubuntu": "linux",
    "symfony": "sensiolabs",
    "electron": "electronjs",
    "microsoft exchange": "server",
}

# abbreviation -> (tokens of which at least one has to be present, expansion)
QUERY_ABBREVIATIONS = {
    "adc": (["citrix"], "application delivery controller"),
    "omsa": (["dell"], "openmanage server administrator"),
    "cdk": (["amazon", "aws"], "aws cdk cloud development kit"),
    "srm": (["vmware"], "site recovery manager"),
    "paloaltonetworks": ([], "palo alto networks"),
    "palo alto networks": ([], "paloaltonetworks"),
    "trend micro": ([], "trendmicro"),
    "ds": (["trend", "micro"], "deep security"),
    "ms": ([], "microsoft"),
    "dsa": (["trend", "micro"], "deep security agent"),
    "dsm": (["trend", "micro"], "deep security manager"),
    "asa": (["cisco"], "adaptive security appliance"),
}

BREAK_CHARS = (" ", ".", "-", "+")
DIGITS = "0123456789"


def get_possible_versions_in_query(query: str) -> List[str]:
    """Find a trailing version in the query.

    The first element is the whole version string, the following ones are its
    parts as separated by ``+``, ``-``, ``_``, ``~`` or spaces.
    """
    version_parts: List[str] = []
    version_match = VERSION_MATCH_CPE_CREATION_RE.search(query)
    if version_match:
        full_version = version_match.group(1).strip()
        version_parts.append(full_version)
        version_parts += VERSION_PART_SPLIT_RE.split(full_version)

        if len(version_parts) > 1 and version_parts[0] == version_parts[1]:
            version_parts = version_parts[1:]
    return version_parts


def is_versionless_query(query: str) -> bool:
    return VERSION_MATCH_CPE_CREATION_RE.search(query) is None


def _contains_token(query: str, token: str) -> bool:
    return query.startswith(token) or query.endswith(token) or f" {token} " in query


def _substitute_spelling_variants(query: str) -> List[str]:
    if "httpd" in query:
        return [query.replace("httpd", "http")]
    return []


def _expand_abbreviations(query: str) -> List[str]:
    alternatives = []
    all_replaced = query
    for abbreviation, (required, expansion) in QUERY_ABBREVIATIONS.items():
        if required and not any(keyword in query for keyword in required):
            continue
        if _contains_token(query, abbreviation):
            alternatives.append(query.replace(abbreviation, f" {expansion} "))
            all_replaced = all_replaced.replace(abbreviation, f" {expansion} ")

    if all_replaced != query:
        alternatives.append(all_replaced)
    return alternatives


def _expand_cisco_abbreviations(query: str) -> List[str]:
    if "cisco" not in query:
        return []
    if not (query.startswith("cm ") or query.endswith(" cm") or " cm " in query):
        return []

    alt_query = query.replace("cm", "communications manager")
    if "sm" in query:
        alt_query = alt_query.replace("sm", "session management")
    return [alt_query]


def _add_vendor_hints(query: str) -> List[str]:
    alternatives = []
    for product, hint in POPULAR_QUERY_CORRECTIONS.items():
        if product in query and not any(word in query for word in hint.split(" ")):
            alternatives.append(hint + " " + query)
    return alternatives


def _js_library_variants(query: str) -> List[str]:
    if not ("js " in query or " js" in query or query.endswith("js")):
        return []

    words = query.split()
    alternatives = []
    for i, word in enumerate(words):
        word = word.strip()
        joined: List[str] = []
        dotted: List[str] = []
        if word == "js" and i > 0:
            joined = words[: i - 1] + [words[i - 1] + "js"]
            dotted = words[: i - 1] + [words[i - 1] + ".js"]
        elif word.endswith("js"):
            joined += words[:i]
            dotted += words[:i]
            if word.endswith(".js"):
                joined += [word[: -len(".js")], "js"]
                dotted += [word[: -len(".js")] + "js"]
            else:
                joined += [word[: -len("js")], "js"]
                dotted += [word[: -len("js")] + ".js"]

        if joined:
            joined += words[i + 1:]
            dotted += words[i + 1:]
            alternatives.append(" ".join(joined))
            alternatives.append(" ".join(dotted))
    return alternatives


def _isolate_version_fragments(query: str) -> List[str]:
    version_parts = get_possible_versions_in_query(query)
    if len(version_parts) > 1:
        without_version = query.replace(version_parts[0], "")
        return [without_version + " ".join(version_parts[1:])]
    return []


def _split_character_classes(query: str) -> List[str]:
    """Separate runs of letters, digits and symbols, e.g. ``openssh 7.4p1`` -> ``openssh 7.4 p1``."""
    split_query = ""
    char_class = string.ascii_letters
    did_split, seen_first_break = False, False
    splits, max_splits = 0, query.count(" ") + ALT_QUERY_MAXSPLIT

    for char in query:
        if char in BREAK_CHARS:
            seen_first_break = True
            split_query += char
            did_split = False
            continue

        if seen_first_break and splits < max_splits and char not in char_class and not did_split:
            split_query += " "
            did_split = True
            splits += 1
            if char in string.ascii_letters:
                char_class = string.ascii_letters
            elif char in DIGITS:
                char_class = DIGITS
            else:
                char_class = string.punctuation
        split_query += char

    parts = split_query.split()
    for i, part in enumerate(parts):
        if part[-1] in (".", "-", "+"):
            parts[i] = part[:-1]
    split_query = " ".join(parts)

    if split_query == query.strip():
        return []

    with_original_words = split_query
    for word in query.split():
        if word not in with_original_words:
            with_original_words += " " + word
    return [split_query, with_original_words]


def _fuse_trailing_words(query: str) -> List[str]:
    words = query.split()
    if len(words) > 2 and len(words[-1]) < 7:
        fused = words[-2] + words[-1]
        return [query + " " + fused, " ".join(words[:-2]) + " " + fused]
    return []


def _zero_extend_version(query: str) -> List[str]:
    version_match = VERSION_MATCH_ZE_RE.search(query)
    if not version_match:
        return []
    version = version_match.group(0)
    return [query.replace(version, version + ".0"), query.replace(version, version + ".0.0")]


REWRITE_RULES = (
    _substitute_spelling_variants,
    _expand_abbreviations,
    _expand_cisco_abbreviations,
    _add_vendor_hints,
    _js_library_variants,
    _isolate_version_fragments,
    _split_character_classes,
    _fuse_trailing_words,
    _zero_extend_version,
)


def get_alternative_queries(query: str) -> List[str]:
    """Return alternative phrasings of a lowercased query in rule order."""
    alternatives: List[str] = []
    for rule in REWRITE_RULES:
        alternatives += rule(query)
    return alternatives


def get_alternative_queries_mapping(queries: Iterable[str]) -> Dict[str, List[str]]:
    return {query: get_alternative_queries(query) for query in queries}
