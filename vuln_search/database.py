"""Read-only access to the product and vulnerability databases."""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .cpe import prefix_range_upper_bound

logger = logging.getLogger(__name__)

MAX_PARAMS_PER_QUERY = 1000


class SQLiteDatabase:
    """Thin read-only wrapper around a SQLite database file."""

    def __init__(self, db_path: str):
        """Initialize database handle, the file has to exist."""
        self.db_path = Path(db_path).expanduser()
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

        if not self.db_path.exists():
            raise FileNotFoundError(f"Database not found: {db_path}")

    def connect(self) -> None:
        """Connect to the database in read-only mode."""
        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def disconnect(self) -> None:
        """Disconnect from the database."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        """Run a parameterized query, a missing table or storage fault yields no rows."""
        if not self.conn:
            raise RuntimeError("Database not connected")

        try:
            with self._lock:
                cursor = self.conn.execute(sql, tuple(params))
                rows = cursor.fetchall()
        except sqlite3.OperationalError as e:
            if "no such table" in str(e) or "no such column" in str(e):
                logger.debug(f"{self.db_path.name}: {e}")
            else:
                logger.warning(f"Query on {self.db_path.name} failed: {e}")
            return []
        except sqlite3.DatabaseError as e:
            logger.warning(f"Query on {self.db_path.name} failed: {e}")
            return []
        return [dict(row) for row in rows]

    def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(sql, params)
        return rows[0] if rows else None

    def has_table(self, name: str) -> bool:
        row = self.fetch_one(
            "SELECT name FROM sqlite_master WHERE type IN ('table', 'view') AND name = ?", (name,)
        )
        return row is not None


class ProductDatabase(SQLiteDatabase):
    """CPE term index and product statistics."""

    def get_entry_ids_for_term(self, term: str) -> List[int]:
        """Resolve a term to CPE entry ids, ``a-b`` elements denote inclusive ranges."""
        row = self.fetch_one("SELECT entry_ids FROM terms_to_entries WHERE term = ?", (term,))
        if not row or not row["entry_ids"]:
            return []

        raw_ids = str(row["entry_ids"]).split(",")
        entry_ids = [int(raw_ids[0])]
        for raw_id in raw_ids[1:]:
            if "-" in raw_id:
                start, end = raw_id.split("-")
                entry_ids += list(range(int(start), int(end) + 1))
            else:
                entry_ids.append(int(raw_id))
        return entry_ids

    def get_cpe_entries(self, entry_ids: List[int]) -> List[Tuple[str, Dict[str, float], float]]:
        """Fetch CPE, term frequency vector and its norm for the given entries."""
        entries = []
        for i in range(0, len(entry_ids), MAX_PARAMS_PER_QUERY):
            batch = entry_ids[i:i + MAX_PARAMS_PER_QUERY]
            placeholders = ",".join("?" * len(batch))
            rows = self.fetch_all(
                "SELECT cpe, term_frequencies, abs_term_frequency FROM cpe_entries "
                f"WHERE entry_id IN ({placeholders})",
                batch,
            )
            for row in rows:
                entries.append(
                    (row["cpe"], json.loads(row["term_frequencies"]), float(row["abs_term_frequency"]))
                )
        return entries

    def get_product_cpe_count(self, cpe_prefix: str) -> Optional[int]:
        row = self.fetch_one(
            "SELECT count FROM product_cpe_counts WHERE product_cpe_prefix = ?", (cpe_prefix,)
        )
        if row and row["count"]:
            return int(row["count"])
        return None


class VulnDatabase(SQLiteDatabase):
    """Vulnerability records, their CPE associations and enrichment tables."""

    def get_nvd_cpe_matches(self, cpe_prefix: str) -> List[Dict[str, Any]]:
        """Get NVD records together with their vulnerable CPE configurations for a product."""
        return self.fetch_all(
            """
            SELECT n.cve_id AS vuln_id, n.description, n.published, n.last_modified,
                   n.cvss_version, n.base_score, n.vector, n.cisa_known_exploited,
                   nc.cpe, nc.cpe_version_start, nc.is_cpe_version_start_including,
                   nc.cpe_version_end, nc.is_cpe_version_end_including
            FROM nvd n
            JOIN nvd_cpe nc ON n.cve_id = nc.cve_id
            WHERE nc.cpe >= ? AND nc.cpe < ?
            """,
            (cpe_prefix, prefix_range_upper_bound(cpe_prefix)),
        )

    def get_ghsa_cpe_matches(self, cpe_prefix: str) -> List[Dict[str, Any]]:
        """Get GitHub advisories together with their vulnerable CPE configurations for a product."""
        return self.fetch_all(
            """
            SELECT g.ghsa_id AS vuln_id, g.aliases, g.description, g.published, g.last_modified,
                   g.cvss_version, g.base_score, g.vector,
                   gc.cpe, gc.cpe_version_start, gc.is_cpe_version_start_including,
                   gc.cpe_version_end, gc.is_cpe_version_end_including
            FROM ghsa g
            JOIN ghsa_cpe gc ON g.ghsa_id = gc.ghsa_id
            WHERE gc.cpe >= ? AND gc.cpe < ?
            """,
            (cpe_prefix, prefix_range_upper_bound(cpe_prefix)),
        )

    def get_nvd_record(self, cve_id: str) -> Optional[Dict[str, Any]]:
        row = self.fetch_one("SELECT * FROM nvd WHERE cve_id = ?", (cve_id.upper(),))
        if row:
            row["vuln_id"] = row["cve_id"]
        return row

    def get_ghsa_record(self, ghsa_id: str) -> Optional[Dict[str, Any]]:
        row = self.fetch_one("SELECT * FROM ghsa WHERE ghsa_id = ? COLLATE NOCASE", (ghsa_id,))
        if row:
            row["vuln_id"] = row["ghsa_id"]
        return row

    def get_backpatches(self, vuln_id: str) -> List[Dict[str, Any]]:
        return self.fetch_all("SELECT cpe, source FROM vuln_backpatches WHERE vuln_id = ?", (vuln_id,))

    def get_exploit_refs(self, cve_id: str) -> List[str]:
        rows = self.fetch_all("SELECT exploit_ref FROM nvd_exploits_refs_view WHERE cve_id = ?", (cve_id,))
        return [row["exploit_ref"] for row in rows if row["exploit_ref"]]

    def get_edb_ids(self, cve_id: str) -> List[str]:
        row = self.fetch_one("SELECT edb_ids FROM cve_edb WHERE cve_id = ?", (cve_id,))
        if not row or not row["edb_ids"]:
            return []
        return [edb_id.strip() for edb_id in str(row["edb_ids"]).split(",") if edb_id.strip()]

    def get_poc_refs(self, cve_id: str) -> List[str]:
        rows = self.fetch_all("SELECT reference FROM poc_in_github WHERE cve_id = ?", (cve_id,))
        return [row["reference"] for row in rows if row["reference"]]

    def get_epss(self, cve_id: str) -> Optional[Dict[str, Any]]:
        return self.fetch_one("SELECT epss, percentile FROM cve_epss WHERE cve_id = ?", (cve_id,))

    def get_eol_releases(self, cpe_prefix: str) -> List[Dict[str, Any]]:
        """Get endoflife.date releases of a product, newest first."""
        return self.fetch_all(
            "SELECT eold_id, version_start, version_latest, eol_info FROM eol_date_data "
            "WHERE cpe_prefix = ? ORDER BY release_id DESC",
            (cpe_prefix,),
        )
