"""Search pipeline: query -> product CPEs -> equivalent CPEs -> vulnerabilities."""

import asyncio
import logging
import tarfile
from typing import Dict, List, Optional

import requests

from .config import Config
from .cpe import is_cpe_string, pad_cpe
from .cpe_search import search_cpes
from .database import ProductDatabase, VulnDatabase
from .enrichment import add_backpatch_info, add_epss_scores, add_exploit_info, get_eol_status
from .equivalence import EquivalenceGraph
from .matcher import VulnMatcher, is_vuln_id_query
from .merger import merge_module_vulns
from .models import BatchItemResult, MatchReason, SearchResult
from .xeol import XeolDatabase, download_xeol_database

logger = logging.getLogger(__name__)


def _resolve_product_ids(
    query: str,
    product_db: Optional[ProductDatabase],
    equivalence: Optional[EquivalenceGraph],
    config: Config,
    is_product_id_query: bool,
    result: SearchResult,
) -> None:
    base_cpe = None
    if is_cpe_string(query):
        base_cpe = pad_cpe(query)
    elif product_db is not None and not is_vuln_id_query(query):
        cpe_result = search_cpes(
            query,
            product_db,
            count=config.cpe_search_count,
            threshold=config.cpe_search_threshold,
            threshold_alt=config.cpe_search_threshold_alt,
        )
        if cpe_result["cpes"]:
            base_cpe = cpe_result["cpes"][0][0]
        if cpe_result["pot_cpes"]:
            result.pot_product_ids["cpe"] = cpe_result["pot_cpes"]

    if not base_cpe:
        return

    if is_product_id_query or equivalence is None:
        result.product_ids["cpe"] = [base_cpe]
    else:
        result.product_ids["cpe"] = list(dict.fromkeys(equivalence.expand(base_cpe)))
    logger.info(f"Resolved '{query}' to {base_cpe} ({len(result.product_ids['cpe'])} product ids)")


def _filter_vulns(
    result: SearchResult,
    ignore_general_product_vulns: bool,
    include_single_version_vulns: bool,
    include_patched: bool,
) -> None:
    for vuln_id in list(result.vulns):
        vuln = result.vulns[vuln_id]
        if ignore_general_product_vulns and vuln.match_reason == MatchReason.GENERAL_PRODUCT_UNCERTAIN:
            del result.vulns[vuln_id]
        elif not include_single_version_vulns and vuln.match_reason == MatchReason.SINGLE_HIGHER_VERSION:
            del result.vulns[vuln_id]
        elif not include_patched and vuln.is_patched():
            del result.vulns[vuln_id]


def search_vulns(
    query: str,
    product_db: Optional[ProductDatabase] = None,
    vuln_db: Optional[VulnDatabase] = None,
    equivalence: Optional[EquivalenceGraph] = None,
    config: Optional[Config] = None,
    known_product_ids: Optional[Dict[str, List[str]]] = None,
    is_product_id_query: bool = False,
    ignore_general_product_vulns: bool = False,
    include_single_version_vulns: bool = False,
    include_patched: bool = False,
    xeol_db: Optional[XeolDatabase] = None,
    skip_vuln_search: bool = False,
) -> SearchResult:
    """Search vulnerabilities affecting the product described by ``query``.

    ``query`` may be free text like ``jquery 3.1.2``, a CPE 2.3 string or a
    comma-separated list of CVE / GHSA ids. Missing databases or tables only
    reduce what is found, they never raise.
    """
    config = config or Config.defaults()
    query = (query or "").strip()
    result = SearchResult()

    if known_product_ids:
        result.product_ids = {ns: list(ids) for ns, ids in known_product_ids.items()}
    elif query:
        _resolve_product_ids(query, product_db, equivalence, config, is_product_id_query, result)

    if vuln_db is None:
        return result

    if not skip_vuln_search:
        product_cpes = result.product_ids.get("cpe", [])
        module_vulns = VulnMatcher(vuln_db).search(query, product_cpes)
        result.vulns = merge_module_vulns(module_vulns, config.modules_data_preference)

        add_exploit_info(result.vulns, vuln_db)
        add_epss_scores(result.vulns, vuln_db)
        add_backpatch_info(result.vulns, vuln_db, product_cpes)
        _filter_vulns(result, ignore_general_product_vulns, include_single_version_vulns, include_patched)

    product_cpes = result.product_ids.get("cpe", [])
    result.version_status = get_eol_status(product_cpes, vuln_db)
    if result.version_status is None and xeol_db is not None:
        result.version_status = xeol_db.get_eol_status(product_cpes)
    return result


def search_vulns_batch(queries: List[str], **kwargs) -> List[BatchItemResult]:
    """Evaluate every query on its own, a failing query does not affect the others.

    The returned items are aligned with ``queries``, duplicates included.
    """
    results: List[BatchItemResult] = []
    for query in queries:
        try:
            results.append(BatchItemResult(query, result=search_vulns(query, **kwargs)))
        except Exception as e:
            logger.error(f"Search for '{query}' failed: {e}")
            results.append(BatchItemResult(query, error=str(e)))
    return results


async def search_vulns_async(query: str, **kwargs) -> SearchResult:
    """Run :func:`search_vulns` in a worker thread."""
    return await asyncio.to_thread(search_vulns, query, **kwargs)


async def search_vulns_batch_async(queries: List[str], **kwargs) -> List[BatchItemResult]:
    """Evaluate queries concurrently, failures are reported per query."""
    outcomes = await asyncio.gather(
        *(search_vulns_async(query, **kwargs) for query in queries), return_exceptions=True
    )

    results: List[BatchItemResult] = []
    for query, outcome in zip(queries, outcomes):
        if isinstance(outcome, Exception):
            logger.error(f"Search for '{query}' failed: {outcome}")
            results.append(BatchItemResult(query, error=str(outcome)))
        else:
            results.append(BatchItemResult(query, result=outcome))
    return results


class VulnSearch:
    """Opens the databases named in a config and runs searches against them."""

    def __init__(self, config: Config):
        self.config = config
        self.product_db: Optional[ProductDatabase] = None
        self.vuln_db: Optional[VulnDatabase] = None
        self.xeol_db: Optional[XeolDatabase] = None
        self.equivalence: Optional[EquivalenceGraph] = None

    def connect(self) -> None:
        """Open all databases, the vulnerability and product databases must exist."""
        self.product_db = ProductDatabase(str(self.config.product_database))
        self.product_db.connect()
        self.vuln_db = VulnDatabase(str(self.config.vuln_database))
        self.vuln_db.connect()
        self.equivalence = EquivalenceGraph(self.config.resources_dir, self.product_db.get_product_cpe_count)

        xeol = self.config.xeol
        if xeol.enabled and xeol.database_path:
            if not xeol.database_path.exists() and xeol.auto_download:
                try:
                    download_xeol_database(xeol.database_path, xeol.download_url)
                except (requests.exceptions.RequestException, tarfile.TarError, KeyError, ValueError, OSError) as e:
                    logger.warning(f"Xeol database download failed, continuing without it: {e}")
            if xeol.database_path.exists():
                self.xeol_db = XeolDatabase(str(xeol.database_path))
                self.xeol_db.connect()
            else:
                logger.warning(f"Xeol database not found at {xeol.database_path}")

    def disconnect(self) -> None:
        for db in (self.product_db, self.vuln_db, self.xeol_db):
            if db:
                db.disconnect()
        self.product_db = self.vuln_db = self.xeol_db = None

    def __enter__(self):
        try:
            self.connect()
        except Exception:
            self.disconnect()
            raise
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def _search_kwargs(self, **flags) -> dict:
        return dict(
            product_db=self.product_db,
            vuln_db=self.vuln_db,
            equivalence=self.equivalence,
            config=self.config,
            xeol_db=self.xeol_db,
            **flags,
        )

    def search(self, query: str, **flags) -> SearchResult:
        return search_vulns(query, **self._search_kwargs(**flags))

    def search_batch(self, queries: List[str], **flags) -> List[BatchItemResult]:
        return search_vulns_batch(queries, **self._search_kwargs(**flags))

    async def search_batch_async(self, queries: List[str], **flags) -> List[BatchItemResult]:
        return await search_vulns_batch_async(queries, **self._search_kwargs(**flags))
