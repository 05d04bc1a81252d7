"""End-of-life data from a xeol database, used when endoflife.date has none."""

import logging
import re
import tarfile
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import requests
from tqdm import tqdm

from .cpe import get_cpe_prefix, get_cpe_version
from .database import SQLiteDatabase
from .enrichment import ENDOFLIFE_URL, is_eol, parse_eol_info
from .models import VersionStatus
from .version import compare_versions, parse_version

logger = logging.getLogger(__name__)

XEOL_LISTING_URL = "https://data.xeol.io/xeol/databases/listing.json"
XEOL_DB_FILENAME = "xeol.db"
DOWNLOAD_CHUNK_SIZE = 1024 * 64

COMMON_PRODUCT_NAMES = {
    "http_server": "Apache HTTP Server",
    "node.js": "Node.js",
    "nodejs": "Node.js",
}


def normalize_product_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9]", " ", name.lower())
    return re.sub(r"\s+", " ", name).strip()


def reference_url(product_name: str) -> str:
    """Build an endoflife.date link for a xeol product name."""
    if product_name.startswith("cpe:2.3:"):
        return ENDOFLIFE_URL.format(product_name.split(":")[4].replace("_", "-"))
    if product_name.startswith("cpe:/"):
        return ENDOFLIFE_URL.format(product_name.split(":")[3].replace("_", "-"))
    if "/" in product_name:
        return ENDOFLIFE_URL.format(product_name.split("/")[-1])
    return ENDOFLIFE_URL.format(re.sub(r"\s+", "-", product_name.lower()))


class XeolDatabase(SQLiteDatabase):
    """Product release cycles from the xeol database."""

    def __init__(self, db_path: str):
        super().__init__(db_path)
        self._product_names: Dict[str, Optional[str]] = {}

    def _find_product_name(self, conditions: str, params: tuple) -> Optional[str]:
        row = self.fetch_one(
            "SELECT DISTINCT name FROM products WHERE permalink LIKE '%pkg.xeol.io%' "
            f"AND ({conditions}) LIMIT 1",
            params,
        )
        return row["name"] if row else None

    def find_product_for_cpe(self, cpe_prefix: str) -> Optional[str]:
        """Map a CPE product prefix to a xeol product name, results are cached."""
        if cpe_prefix in self._product_names:
            return self._product_names[cpe_prefix]

        parts = cpe_prefix.split(":")
        if len(parts) < 5:
            self._product_names[cpe_prefix] = None
            return None
        vendor, product = parts[3], parts[4]

        name = self._find_product_name(
            "name = ? OR name = ?", (f"cpe:2.3:a:{vendor}:{product}", f"cpe:/a:{vendor}:{product}")
        )

        if not name:
            terms = [product, product.replace("_", " "), product.replace("_", "-")]
            if vendor and vendor != product:
                terms += [f"{vendor} {product}", f"{vendor}-{product}", f"{vendor}_{product}"]
            for term in terms:
                term = COMMON_PRODUCT_NAMES.get(term.lower(), term)
                name = self._find_product_name(
                    "name = ? OR LOWER(name) = ? OR LOWER(REPLACE(name, ' ', '')) = ?",
                    (term, term.lower(), normalize_product_name(term).replace(" ", "")),
                )
                if name:
                    break

        if not name:
            normalized = normalize_product_name(product)
            compact = normalized.replace(" ", "")
            name = self._find_product_name(
                "LOWER(REPLACE(name, ' ', '')) LIKE ? OR LOWER(REPLACE(name, '-', '')) LIKE ? "
                "OR LOWER(name) LIKE ?",
                (f"%{compact}%", f"%{compact}%", f"%{normalized}%"),
            )

        self._product_names[cpe_prefix] = name
        return name

    def get_cycles(self, product_name: str) -> Optional[Dict[str, Any]]:
        product = self.fetch_one(
            "SELECT id, name FROM products WHERE name = ? AND permalink LIKE '%pkg.xeol.io%' LIMIT 1",
            (product_name,),
        )
        if not product:
            return None
        cycles = self.fetch_all(
            "SELECT release_cycle, eol, eol_bool, latest_release, release_date FROM cycles "
            "WHERE product_id = ? ORDER BY release_date DESC",
            (product["id"],),
        )
        return {"name": product["name"], "cycles": cycles}

    def get_version_status(
        self, product_name: str, version: str, now: Optional[datetime] = None
    ) -> Optional[VersionStatus]:
        """Classify a version against the release cycles of a xeol product."""
        data = self.get_cycles(product_name)
        if not data or not data["cycles"]:
            return None
        cycles, ref = data["cycles"], reference_url(data["name"])

        latest = ""
        for cycle in cycles:
            candidate = cycle["latest_release"] or cycle["release_cycle"]
            if candidate and (not latest or compare_versions(candidate, latest) > 0):
                latest = candidate
        if not latest:
            return None

        def cycle_is_eol(cycle):
            return bool(cycle["eol_bool"]) or is_eol(parse_eol_info(cycle["eol"]), now)

        if not version or version in ("*", "-"):
            return VersionStatus("eol" if cycle_is_eol(cycles[0]) else "N/A", latest, ref)

        query_version = parse_version(version)
        if compare_versions(query_version, latest) > 0:
            return None

        for i, cycle in enumerate(cycles):
            cycle_version = parse_version(cycle["release_cycle"])
            if not cycle_version:
                continue
            if compare_versions(query_version, cycle_version) >= 0:
                latest_in_cycle = parse_version(cycle["latest_release"]) or cycle_version
                eol = cycle_is_eol(cycle)
                if compare_versions(query_version, latest_in_cycle) >= 0:
                    return VersionStatus("eol" if eol else "current", latest, ref)
                return VersionStatus("eol" if eol else "outdated", latest, ref)
            if i == len(cycles) - 1:
                return VersionStatus("eol", latest, ref)
        return None

    def get_eol_status(self, product_cpes: Iterable[str]) -> Optional[VersionStatus]:
        """EOL status of the first product CPE xeol knows about."""
        for cpe in product_cpes:
            product_name = self.find_product_for_cpe(get_cpe_prefix(cpe))
            if not product_name:
                continue
            return self.get_version_status(product_name, get_cpe_version(cpe))
        return None


def download_xeol_database(target_path: Path, listing_url: str = XEOL_LISTING_URL) -> Path:
    """Download the newest xeol database and extract it to ``target_path``."""
    target_path = Path(target_path).expanduser()
    target_path.parent.mkdir(parents=True, exist_ok=True)

    logger.info(f"Fetching xeol database listing from {listing_url}")
    try:
        response = requests.get(listing_url, timeout=30)
        response.raise_for_status()
        listing = response.json()
    except requests.exceptions.RequestException as e:
        logger.error(f"Failed to fetch xeol database listing: {e}")
        raise

    available = listing.get("available", {}).get("1") or []
    if not available or not available[0].get("url"):
        raise ValueError("No xeol database URL found in listing")
    db_url = available[0]["url"]

    logger.info(f"Downloading xeol database from {db_url}")
    with tempfile.TemporaryDirectory(dir=target_path.parent) as tmp_dir:
        archive_path = Path(tmp_dir) / "xeol.tar.xz"
        try:
            with requests.get(db_url, stream=True, timeout=60) as response:
                response.raise_for_status()
                total = int(response.headers.get("content-length", 0)) or None
                with open(archive_path, "wb") as f, tqdm(
                    total=total, unit="B", unit_scale=True, desc="Downloading xeol database"
                ) as progress:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        progress.update(len(chunk))
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to download xeol database: {e}")
            raise

        with tarfile.open(archive_path, "r:*") as archive:
            member = archive.getmember(XEOL_DB_FILENAME)
            extracted = archive.extractfile(member)
            if extracted is None:
                raise ValueError(f"{XEOL_DB_FILENAME} in archive is not a regular file")
            with extracted, open(target_path, "wb") as f:
                while True:
                    chunk = extracted.read(DOWNLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    f.write(chunk)

    logger.info(f"Xeol database downloaded and extracted to {target_path}")
    return target_path
