"""Data models for vulnerability search results."""

import copy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Optional, Set, Tuple


class MatchReason(IntEnum):
    """Why a vulnerability was considered applicable, higher is stronger evidence."""

    SINGLE_HIGHER_VERSION = 1
    GENERAL_PRODUCT_UNCERTAIN = 2
    GENERAL_PRODUCT_OK = 3
    PRODUCT_MATCH = 4
    VERSION_IN_RANGE = 5
    VULN_ID = 6

    def to_str(self) -> str:
        return self.name.lower()


@dataclass
class Vulnerability:
    """A vulnerability record matched for a query."""

    id: str
    match_reason: MatchReason
    match_sources: List[str] = field(default_factory=list)
    description: str = ""
    published: str = ""
    modified: str = ""
    cvss_ver: str = ""
    cvss: str = "-1.0"
    cvss_vec: str = ""
    cisa_known_exploited: bool = False
    href: str = ""
    exploits: Set[str] = field(default_factory=set)
    aliases: Dict[str, str] = field(default_factory=dict)
    reported_patched_by: Set[str] = field(default_factory=set)
    epss: str = ""
    misc: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.id not in self.aliases:
            self.aliases[self.id] = self.href

    def is_patched(self) -> bool:
        """Return True if some source reported the queried version as patched."""
        return bool(self.reported_patched_by)

    def cvss_score(self) -> float:
        try:
            return float(self.cvss)
        except (TypeError, ValueError):
            return -1.0

    def clone(self) -> "Vulnerability":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "match_reason": self.match_reason.to_str(),
            "match_sources": list(self.match_sources),
            "description": self.description,
            "published": self.published,
            "modified": self.modified,
            "href": self.href,
            "cvss_ver": self.cvss_ver,
            "cvss": self.cvss,
            "cvss_vec": self.cvss_vec,
            "cisa_known_exploited": self.cisa_known_exploited,
            "aliases": dict(self.aliases),
            "exploits": sorted(self.exploits),
            "reported_patched_by": sorted(self.reported_patched_by),
            "epss": self.epss,
            "misc": dict(self.misc),
        }


@dataclass
class VersionStatus:
    """End-of-life status of the queried product version."""

    status: str
    latest: str
    ref: str

    def to_dict(self) -> Dict[str, str]:
        return {"status": self.status, "latest": self.latest, "ref": self.ref}


@dataclass
class SearchResult:
    """Result of resolving one query to products and vulnerabilities."""

    product_ids: Dict[str, List[str]] = field(default_factory=lambda: {"cpe": []})
    pot_product_ids: Dict[str, List[Tuple[str, float]]] = field(default_factory=dict)
    vulns: Dict[str, Vulnerability] = field(default_factory=dict)
    version_status: Optional[VersionStatus] = None

    def sorted_vulns(self) -> List[Vulnerability]:
        """Vulnerabilities ordered by CVSS score, highest first."""
        return sorted(self.vulns.values(), key=lambda vuln: (-vuln.cvss_score(), vuln.id))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = {
            "product_ids": {ns: list(ids) for ns, ids in self.product_ids.items()},
            "pot_product_ids": {
                ns: [[pid, score] for pid, score in ids] for ns, ids in self.pot_product_ids.items()
            },
            "vulns": {vuln_id: vuln.to_dict() for vuln_id, vuln in self.vulns.items()},
        }
        if self.version_status:
            result["version_status"] = self.version_status.to_dict()
        return result


@dataclass
class BatchItemResult:
    """Outcome of one query inside a batch search."""

    query: str
    result: Optional[SearchResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"error": self.error}
        return self.result.to_dict()
