"""Matching of product CPEs and vulnerability ids against stored records."""

import logging
import re
from typing import Any, Callable, Dict, List, Optional

from .cpe import cpe_matches_prefix, get_cpe_prefix, get_cpe_version
from .database import VulnDatabase
from .merger import ModuleVulns, merge_vulnerabilities
from .models import MatchReason, Vulnerability
from .version import is_version_in_range

logger = logging.getLogger(__name__)

CVE_ID_RE = re.compile(r"CVE-\d{4}-\d+", re.IGNORECASE)
GHSA_ID_RE = re.compile(r"GHSA(-[a-z0-9]{4}){3}", re.IGNORECASE)
NVD_VULN_URL = "https://nvd.nist.gov/vuln/detail/{}"
GHSA_VULN_URL = "https://github.com/advisories/{}"

UNSET_VERSIONS = ("*", "-", "")


def is_vuln_id_query(query: str) -> bool:
    """Return True if the query only consists of comma-separated vulnerability ids."""
    parts = [part.strip() for part in query.split(",")]
    if not any(parts):
        return False
    return all(
        CVE_ID_RE.fullmatch(part) or GHSA_ID_RE.fullmatch(part) for part in parts if part
    )


def classify_match(query_cpe: str, row: Dict[str, Any]) -> Optional[MatchReason]:
    """Decide whether a stored vulnerable configuration applies to the query CPE.

    Returns the reason of the match or None if it does not apply.
    """
    vuln_cpe = row["cpe"]
    if not cpe_matches_prefix(query_cpe, vuln_cpe):
        return None

    query_version = get_cpe_version(query_cpe)
    vuln_version = get_cpe_version(vuln_cpe)
    start, end = row.get("cpe_version_start"), row.get("cpe_version_end")
    has_range = bool(start or end)

    if query_version not in UNSET_VERSIONS:
        if has_range:
            in_range = is_version_in_range(
                query_version,
                start,
                bool(row.get("is_cpe_version_start_including")),
                end,
                bool(row.get("is_cpe_version_end_including")),
            )
            return MatchReason.VERSION_IN_RANGE if in_range else None
        if vuln_version in ("*", ""):
            return MatchReason.GENERAL_PRODUCT_UNCERTAIN
        if vuln_version == query_version:
            return MatchReason.PRODUCT_MATCH
        return None

    if vuln_version in ("*", ""):
        return MatchReason.GENERAL_PRODUCT_OK
    return None


def _score_str(value) -> str:
    if value is None or value == "":
        return "-1.0"
    return str(value)


def nvd_record_to_vuln(row: Dict[str, Any], reason: MatchReason) -> Vulnerability:
    cve_id = row["vuln_id"].upper()
    return Vulnerability(
        id=cve_id,
        match_reason=reason,
        match_sources=["nvd"],
        description=row.get("description") or "",
        published=row.get("published") or "",
        modified=row.get("last_modified") or "",
        cvss_ver=str(row.get("cvss_version") or ""),
        cvss=_score_str(row.get("base_score")),
        cvss_vec=row.get("vector") or "",
        cisa_known_exploited=bool(row.get("cisa_known_exploited")),
        href=NVD_VULN_URL.format(cve_id),
    )


def ghsa_record_to_vuln(row: Dict[str, Any], reason: MatchReason) -> Vulnerability:
    ghsa_id = row["vuln_id"]
    href = GHSA_VULN_URL.format(ghsa_id.upper())
    aliases = {ghsa_id: href}
    for alias in (row.get("aliases") or "").split(","):
        alias = alias.strip()
        if CVE_ID_RE.fullmatch(alias):
            aliases[alias.upper()] = NVD_VULN_URL.format(alias.upper())
        elif alias:
            aliases[alias] = ""

    return Vulnerability(
        id=ghsa_id,
        match_reason=reason,
        match_sources=["ghsa"],
        description=row.get("description") or "",
        published=row.get("published") or "",
        modified=row.get("last_modified") or "",
        cvss_ver=str(row.get("cvss_version") or ""),
        cvss=_score_str(row.get("base_score")),
        cvss_vec=row.get("vector") or "",
        href=href,
        aliases=aliases,
    )


class VulnSource:
    """One vulnerability data source the matcher consults."""

    def __init__(
        self,
        name: str,
        fetch_cpe_matches: Callable[[VulnDatabase, str], List[Dict[str, Any]]],
        fetch_record: Callable[[VulnDatabase, str], Optional[Dict[str, Any]]],
        id_pattern: "re.Pattern",
        to_vuln: Callable[[Dict[str, Any], MatchReason], Vulnerability],
    ):
        self.name = name
        self.fetch_cpe_matches = fetch_cpe_matches
        self.fetch_record = fetch_record
        self.id_pattern = id_pattern
        self.to_vuln = to_vuln


SOURCES = (
    VulnSource("nvd", VulnDatabase.get_nvd_cpe_matches, VulnDatabase.get_nvd_record, CVE_ID_RE, nvd_record_to_vuln),
    VulnSource("ghsa", VulnDatabase.get_ghsa_cpe_matches, VulnDatabase.get_ghsa_record, GHSA_ID_RE, ghsa_record_to_vuln),
)


def _add_vuln(vulns: Dict[str, Vulnerability], vuln: Vulnerability) -> None:
    if vuln.id in vulns:
        vulns[vuln.id] = merge_vulnerabilities(vulns[vuln.id], vuln)
    else:
        vulns[vuln.id] = vuln


class VulnMatcher:
    """Finds vulnerability records for product CPEs and direct vulnerability ids."""

    def __init__(self, vuln_db: VulnDatabase, sources=SOURCES):
        self.vuln_db = vuln_db
        self.sources = sources

    def match_cpes(self, source: VulnSource, cpes: List[str]) -> Dict[str, Vulnerability]:
        """Match every CPE against the stored configurations of one source."""
        vulns: Dict[str, Vulnerability] = {}
        rows_by_prefix: Dict[str, List[Dict[str, Any]]] = {}

        for cpe in cpes:
            prefix = get_cpe_prefix(cpe)
            if prefix not in rows_by_prefix:
                rows_by_prefix[prefix] = source.fetch_cpe_matches(self.vuln_db, prefix)

            for row in rows_by_prefix[prefix]:
                reason = classify_match(cpe, row)
                if reason is not None:
                    _add_vuln(vulns, source.to_vuln(row, reason))
        return vulns

    def match_vuln_ids(self, source: VulnSource, query: str) -> Dict[str, Vulnerability]:
        """Look up vulnerability ids mentioned in a comma-separated query."""
        vulns: Dict[str, Vulnerability] = {}
        for part in query.split(","):
            id_match = source.id_pattern.search(part.strip())
            if not id_match:
                continue
            row = source.fetch_record(self.vuln_db, id_match.group(0))
            if row:
                _add_vuln(vulns, source.to_vuln(row, MatchReason.VULN_ID))
        return vulns

    def search(self, query: str, cpes: List[str]) -> ModuleVulns:
        """Run all sources, returning one vulnerability map per source."""
        unique_cpes = list(dict.fromkeys(cpes))
        module_vulns: ModuleVulns = {}
        for source in self.sources:
            vulns = self.match_cpes(source, unique_cpes)
            for vuln in self.match_vuln_ids(source, query).values():
                _add_vuln(vulns, vuln)
            logger.debug(f"{source.name}: {len(vulns)} vulnerabilities for {len(unique_cpes)} CPEs")
            module_vulns[source.name] = vulns
        return module_vulns
