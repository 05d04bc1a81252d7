"""Merging of vulnerability records reported by several data sources."""

from typing import Dict, Iterable, List, Optional

from .models import Vulnerability

ModuleVulns = Dict[str, Dict[str, Vulnerability]]

MERGED_FIELDS = (
    "id",
    "match_reason",
    "description",
    "published",
    "modified",
    "cvss_ver",
    "cvss",
    "cvss_vec",
    "href",
)


def _union(first: Iterable[str], second: Iterable[str]) -> List[str]:
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged


def merge_vulnerabilities(existing: Vulnerability, incoming: Vulnerability) -> Vulnerability:
    """Combine two records of the same flaw into a new record.

    The record with the strictly higher match reason provides the id and the
    descriptive fields. Aliases, sources, exploits and patch markers are
    always united. With equal match reasons ``existing`` wins, so the outcome
    only depends on argument order when both carry the same reason.
    """
    winner, other = (incoming, existing) if incoming.match_reason > existing.match_reason else (existing, incoming)

    merged = winner.clone()
    merged.match_sources = _union(winner.match_sources, other.match_sources)
    merged.cisa_known_exploited = existing.cisa_known_exploited or incoming.cisa_known_exploited
    merged.exploits = existing.exploits | incoming.exploits
    merged.reported_patched_by = existing.reported_patched_by | incoming.reported_patched_by

    aliases = dict(other.aliases)
    aliases.update(winner.aliases)
    merged.aliases = aliases

    if not merged.epss:
        merged.epss = other.epss
    for key, value in other.misc.items():
        merged.misc.setdefault(key, value)
    return merged


def _find_tracked_id(
    vuln: Vulnerability, merged: Dict[str, Vulnerability], alias_index: Dict[str, str]
) -> Optional[str]:
    """Find the key of an already merged record sharing an alias with ``vuln``."""
    for alias in vuln.aliases:
        if alias in merged:
            return alias
        if alias in alias_index:
            return alias_index[alias]
        for merged_id, merged_vuln in merged.items():
            if alias in merged_vuln.aliases:
                return merged_id
    return None


def merge_module_vulns(module_vulns: ModuleVulns, preference: List[str]) -> Dict[str, Vulnerability]:
    """Merge per-source vulnerability maps into one map keyed by canonical id.

    Sources listed in ``preference`` are merged first, in that order, the
    remaining ones follow sorted by name.
    """
    merge_order = list(preference) + sorted(m for m in module_vulns if m not in preference)

    merged: Dict[str, Vulnerability] = {}
    for module_id in merge_order:
        vulns = module_vulns.get(module_id)
        if not vulns:
            continue

        # alias -> key of the merged record, for records of this source
        alias_index: Dict[str, str] = {}
        for vuln_id, vuln in vulns.items():
            tracked_id = _find_tracked_id(vuln, merged, alias_index)
            if tracked_id is None:
                merged[vuln_id] = vuln
                for alias in vuln.aliases:
                    alias_index.setdefault(alias, vuln_id)
                continue

            combined = merge_vulnerabilities(merged[tracked_id], vuln)
            if combined.id != tracked_id:
                del merged[tracked_id]
                for alias, key in alias_index.items():
                    if key == tracked_id:
                        alias_index[alias] = combined.id
            merged[combined.id] = combined
            for alias in combined.aliases:
                alias_index[alias] = combined.id

    return merged
