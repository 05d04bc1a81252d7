"""vuln_search - resolve software product queries to CPEs and their known vulnerabilities."""

__version__ = "0.1.0"
__description__ = "Resolve software product queries to CPEs and their known vulnerabilities"

from .config import Config, load_config
from .core import VulnSearch, search_vulns, search_vulns_async, search_vulns_batch, search_vulns_batch_async
from .cpe_search import search_cpes
from .database import ProductDatabase, VulnDatabase
from .equivalence import EquivalenceGraph
from .merger import merge_module_vulns, merge_vulnerabilities
from .models import BatchItemResult, MatchReason, SearchResult, VersionStatus, Vulnerability

__all__ = [
    "Config",
    "load_config",
    "VulnSearch",
    "search_vulns",
    "search_vulns_async",
    "search_vulns_batch",
    "search_vulns_batch_async",
    "search_cpes",
    "ProductDatabase",
    "VulnDatabase",
    "EquivalenceGraph",
    "merge_module_vulns",
    "merge_vulnerabilities",
    "BatchItemResult",
    "MatchReason",
    "SearchResult",
    "VersionStatus",
    "Vulnerability",
]
