"""Exploit, EPSS, patch and end-of-life information for matched vulnerabilities.

Every lookup here is optional. When the backing table is missing the
vulnerabilities are returned unchanged.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Union

from .cpe import get_cpe_prefix, get_cpe_version, has_concrete_version, is_cpe_equal
from .database import VulnDatabase
from .models import VersionStatus, Vulnerability
from .version import compare_versions, parse_version

logger = logging.getLogger(__name__)

EXPLOIT_DB_URL = "https://www.exploit-db.com/exploits/{}"
ENDOFLIFE_URL = "https://endoflife.date/{}"


def get_cve_ids(vuln: Vulnerability) -> Set[str]:
    """CVE ids a record is known under, including its own id."""
    ids = {alias for alias in vuln.aliases if alias.startswith("CVE-")}
    if vuln.id.startswith("CVE-"):
        ids.add(vuln.id)
    return ids


def add_exploit_info(vulns: Dict[str, Vulnerability], vuln_db: VulnDatabase) -> None:
    """Collect exploit references from NVD, Exploit-DB and PoC-in-GitHub."""
    for vuln in vulns.values():
        for cve_id in sorted(get_cve_ids(vuln)):
            vuln.exploits.update(vuln_db.get_exploit_refs(cve_id))
            vuln.exploits.update(EXPLOIT_DB_URL.format(edb_id) for edb_id in vuln_db.get_edb_ids(cve_id))
            vuln.exploits.update(vuln_db.get_poc_refs(cve_id))


def add_epss_scores(vulns: Dict[str, Vulnerability], vuln_db: VulnDatabase) -> None:
    """Attach the highest EPSS score among a record's CVE ids."""
    if not vuln_db.has_table("cve_epss"):
        logger.debug("No EPSS data available")
        return

    for vuln in vulns.values():
        max_epss, max_percentile = -1.0, -1.0
        for cve_id in get_cve_ids(vuln):
            row = vuln_db.get_epss(cve_id)
            if not row or row["epss"] is None:
                continue
            epss = float(row["epss"])
            if epss > max_epss:
                max_epss = epss
                max_percentile = float(row["percentile"]) if row["percentile"] is not None else -1.0

        if max_epss != -1.0:
            vuln.epss = f"{max_epss * 100:.2f}%"
            if max_percentile != -1.0:
                vuln.misc["epss_percentile"] = f"{max_percentile * 100:.1f}%"


def get_epss_risk_level(epss: str) -> str:
    """Map a formatted EPSS percentage to a risk level."""
    if not epss:
        return "Unknown"

    value = float(epss.replace("%", ""))
    if value >= 10:
        return "Critical"
    if value >= 5:
        return "High"
    if value >= 1:
        return "Medium"
    if value >= 0.1:
        return "Low"
    return "Very Low"


def add_backpatch_info(
    vulns: Dict[str, Vulnerability], vuln_db: VulnDatabase, product_cpes: Iterable[str]
) -> None:
    """Mark records whose exact queried product version was reported as patched."""
    versioned_cpes = [cpe for cpe in product_cpes if has_concrete_version(cpe)]
    if not versioned_cpes:
        return

    for vuln in vulns.values():
        for vuln_id in [vuln.id] + [alias for alias in vuln.aliases if alias != vuln.id]:
            for row in vuln_db.get_backpatches(vuln_id):
                if not has_concrete_version(row["cpe"]):
                    continue
                if any(is_cpe_equal(row["cpe"], cpe) for cpe in versioned_cpes):
                    vuln.reported_patched_by.add(row["source"])


def parse_eol_info(eol_info: Optional[str]) -> Union[datetime, bool]:
    """Interpret ``eol_info``, either ``true``/``false`` or an ISO date."""
    if not eol_info or eol_info == "false":
        return False
    if eol_info == "true":
        return True
    try:
        return datetime.fromisoformat(eol_info)
    except ValueError:
        logger.debug(f"Unparseable EOL date: {eol_info}")
        return False


def is_eol(eol: Union[datetime, bool], now: Optional[datetime] = None) -> bool:
    if isinstance(eol, bool):
        return eol
    return (now or datetime.now()) >= eol


def classify_eol_releases(
    releases: List[Dict[str, str]], query_version: str, now: Optional[datetime] = None
) -> Optional[VersionStatus]:
    """Determine the status of a version given a product's releases, newest first."""
    if not releases:
        return None

    latest = releases[0]["version_latest"] or ""
    version = parse_version(query_version) if query_version not in ("*", "-", "") else []

    for i, release in enumerate(releases):
        ref = ENDOFLIFE_URL.format(release["eold_id"])
        release_eol = is_eol(parse_eol_info(release["eol_info"]), now)

        if not version:
            return VersionStatus("eol" if release_eol else "N/A", latest, ref)

        release_start = parse_version(release["version_start"])
        release_end = parse_version(release["version_latest"])
        if compare_versions(version, release_end) >= 0:
            return VersionStatus("eol" if release_eol else "current", latest, ref)

        start_cmp = compare_versions(version, release_start)
        is_oldest = i == len(releases) - 1
        if start_cmp >= 0 or (is_oldest and start_cmp <= 0):
            return VersionStatus("eol" if release_eol else "outdated", latest, ref)
    return None


def get_eol_status(product_cpes: Iterable[str], vuln_db: VulnDatabase) -> Optional[VersionStatus]:
    """EOL status from endoflife.date for the first product that has data."""
    if not vuln_db.has_table("eol_date_data"):
        return None

    for cpe in product_cpes:
        releases = vuln_db.get_eol_releases(get_cpe_prefix(cpe))
        status = classify_eol_releases(releases, get_cpe_version(cpe))
        if status:
            return status
    return None


def format_eol_status(status: Optional[VersionStatus]) -> str:
    """Render a one-line summary of an EOL status."""
    if not status:
        return ""

    texts = {
        "current": "✓ Current version",
        "outdated": f"⚠ Outdated (latest: {status.latest})",
        "eol": f"✗ End-of-Life (latest: {status.latest})",
        "N/A": "Version status unknown",
    }
    text = texts.get(status.status, "")
    if text and status.ref:
        return f"{text} - {status.ref}"
    return text
