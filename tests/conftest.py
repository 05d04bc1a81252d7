"""Shared fixtures: small product and vulnerability databases."""

import json
import sqlite3
from collections import Counter

import pytest

from vuln_search.config import Config
from vuln_search.cpe import get_cpe_prefix
from vuln_search.cpe_search import compute_cpe_term_vector
from vuln_search.database import ProductDatabase, VulnDatabase
from vuln_search.equivalence import EquivalenceGraph

PRODUCT_CPES = [
    ("cpe:2.3:a:redis:redis:*:*:*:*:*:*:*:*", "Redis"),
    ("cpe:2.3:a:redis:redis:6.0:*:*:*:*:*:*:*", "Redis 6.0"),
    ("cpe:2.3:a:apache:http_server:*:*:*:*:*:*:*:*", ""),
    ("cpe:2.3:a:apache:http_server:2.4.39:*:*:*:*:*:*:*", ""),
    ("cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*", "jQuery"),
    ("cpe:2.3:a:jquery:jquery:3.1.2:*:*:*:*:*:*:*", "jQuery 3.1.2"),
]

NVD_RECORDS = [
    ("CVE-2021-32675", "Redis proto-max-bulk-len denial of service", "2021-10-04", "2022-01-01", "3.1", 7.5, "AV:N/AC:L", 0),
    ("CVE-2022-0543", "Redis Lua sandbox escape", "2022-02-18", "2022-03-01", "3.1", 10.0, "AV:N/AC:L", 1),
    ("CVE-2019-0211", "Apache HTTP Server privilege escalation", "2019-04-08", "2019-05-01", "3.0", 7.8, "AV:L/AC:L", 0),
    ("CVE-2020-11022", "jQuery htmlPrefilter XSS", "2020-04-29", "2020-05-01", "3.1", 6.1, "AV:N/AC:L", 0),
    ("CVE-2019-11358", "jQuery prototype pollution", "2019-04-20", "2019-05-01", "3.1", 6.1, "AV:N/AC:L", 0),
    ("CVE-2024-27286", "Zulip missing authorization", "2024-03-20", "2024-03-21", "3.1", 4.3, "AV:N/AC:L", 0),
]

NVD_CPES = [
    ("CVE-2021-32675", "cpe:2.3:a:redis:redis:*:*:*:*:*:*:*:*", "6.0.0", 1, "6.0.14", 0),
    ("CVE-2022-0543", "cpe:2.3:a:redislabs:redis:6.0:*:*:*:*:*:*:*", "", 0, "", 0),
    ("CVE-2019-0211", "cpe:2.3:a:apache:http_server:*:*:*:*:*:*:*:*", "", 0, "", 0),
    ("CVE-2020-11022", "cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*", "1.2", 1, "3.5.0", 0),
    ("CVE-2019-11358", "cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*", "", 0, "3.4.0", 0),
]

GHSA_RECORDS = [
    ("GHSA-gxpj-cx7g-858c", "CVE-2020-11022", "Potential XSS vulnerability in jQuery", "2020-04-29", "2020-05-02", "3.1", 6.9, "AV:N/AC:H"),
]

GHSA_CPES = [
    ("GHSA-gxpj-cx7g-858c", "cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*", "1.2", 1, "3.5.0", 0),
]


def build_product_db(path, cpes=PRODUCT_CPES):
    """Create a product database with a term index over the given CPEs."""
    conn = sqlite3.connect(path)
    conn.execute("CREATE TABLE cpe_entries (entry_id INTEGER PRIMARY KEY, cpe TEXT, term_frequencies TEXT, abs_term_frequency REAL)")
    conn.execute("CREATE TABLE terms_to_entries (term TEXT PRIMARY KEY, entry_ids TEXT)")
    conn.execute("CREATE TABLE product_cpe_counts (product_cpe_prefix TEXT PRIMARY KEY, count INTEGER)")

    term_entries = {}
    for entry_id, (cpe, name) in enumerate(cpes, start=1):
        vector, norm = compute_cpe_term_vector(cpe, name)
        conn.execute(
            "INSERT INTO cpe_entries VALUES (?, ?, ?, ?)", (entry_id, cpe, json.dumps(vector), norm)
        )
        for term in vector:
            term_entries.setdefault(term, []).append(str(entry_id))

    for term, entry_ids in term_entries.items():
        conn.execute("INSERT INTO terms_to_entries VALUES (?, ?)", (term, ",".join(entry_ids)))

    for prefix, count in Counter(get_cpe_prefix(cpe) for cpe, _ in cpes).items():
        conn.execute("INSERT INTO product_cpe_counts VALUES (?, ?)", (prefix, count))

    conn.commit()
    conn.close()


def build_vuln_db(path):
    """Create a vulnerability database covering every optional table."""
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE nvd (cve_id TEXT PRIMARY KEY, description TEXT, published TEXT, last_modified TEXT,
                          cvss_version TEXT, base_score REAL, vector TEXT, cisa_known_exploited INTEGER);
        CREATE TABLE nvd_cpe (cve_id TEXT, cpe TEXT, cpe_version_start TEXT, is_cpe_version_start_including INTEGER,
                              cpe_version_end TEXT, is_cpe_version_end_including INTEGER);
        CREATE TABLE ghsa (ghsa_id TEXT PRIMARY KEY, aliases TEXT, description TEXT, published TEXT,
                           last_modified TEXT, cvss_version TEXT, base_score REAL, vector TEXT);
        CREATE TABLE ghsa_cpe (ghsa_id TEXT, cpe TEXT, cpe_version_start TEXT, is_cpe_version_start_including INTEGER,
                               cpe_version_end TEXT, is_cpe_version_end_including INTEGER);
        CREATE TABLE vuln_backpatches (vuln_id TEXT, cpe TEXT, source TEXT);
        CREATE TABLE nvd_exploits_refs_view (cve_id TEXT, exploit_ref TEXT);
        CREATE TABLE cve_edb (cve_id TEXT, edb_ids TEXT);
        CREATE TABLE poc_in_github (cve_id TEXT, reference TEXT);
        CREATE TABLE cve_epss (cve_id TEXT, epss REAL, percentile REAL);
        CREATE TABLE eol_date_data (eold_id TEXT, cpe_prefix TEXT, release_id INTEGER, version_start TEXT,
                                    version_latest TEXT, eol_info TEXT);
        """
    )
    conn.executemany("INSERT INTO nvd VALUES (?, ?, ?, ?, ?, ?, ?, ?)", NVD_RECORDS)
    conn.executemany("INSERT INTO nvd_cpe VALUES (?, ?, ?, ?, ?, ?)", NVD_CPES)
    conn.executemany("INSERT INTO ghsa VALUES (?, ?, ?, ?, ?, ?, ?, ?)", GHSA_RECORDS)
    conn.executemany("INSERT INTO ghsa_cpe VALUES (?, ?, ?, ?, ?, ?)", GHSA_CPES)
    conn.execute(
        "INSERT INTO vuln_backpatches VALUES (?, ?, ?)",
        ("CVE-2019-11358", "cpe:2.3:a:jquery:jquery:3.1.2:*:*:*:*:*:*:*", "debian"),
    )
    conn.execute("INSERT INTO nvd_exploits_refs_view VALUES (?, ?)", ("CVE-2020-11022", "https://example.org/exploit/11022"))
    conn.execute("INSERT INTO cve_edb VALUES (?, ?)", ("CVE-2020-11022", "49766, 49767"))
    conn.execute("INSERT INTO poc_in_github VALUES (?, ?)", ("CVE-2020-11022", "https://github.com/example/poc-11022"))
    conn.execute("INSERT INTO cve_epss VALUES (?, ?, ?)", ("CVE-2020-11022", 0.0123, 0.85))
    conn.executemany(
        "INSERT INTO eol_date_data VALUES (?, ?, ?, ?, ?, ?)",
        [
            ("jquery", "cpe:2.3:a:jquery:jquery:", 2, "3.0", "3.7.1", "false"),
            ("jquery", "cpe:2.3:a:jquery:jquery:", 1, "2.0", "2.2.4", "true"),
        ],
    )
    conn.commit()
    conn.close()


def write_resources(resources_dir, manual=None, debian=None, deprecated=None):
    resources_dir.mkdir(parents=True, exist_ok=True)
    if manual is not None:
        (resources_dir / "man_equiv_cpes.json").write_text(json.dumps(manual))
    if debian is not None:
        (resources_dir / "debian_equiv_cpes.json").write_text(json.dumps(debian))
    if deprecated is not None:
        (resources_dir / "deprecated-cpes.json").write_text(json.dumps(deprecated))
    return resources_dir


@pytest.fixture
def product_db_path(tmp_path):
    path = tmp_path / "productdb.db3"
    build_product_db(path)
    return path


@pytest.fixture
def vuln_db_path(tmp_path):
    path = tmp_path / "vulndb.db3"
    build_vuln_db(path)
    return path


@pytest.fixture
def resources_dir(tmp_path):
    return write_resources(
        tmp_path / "resources",
        manual={"cpe:2.3:a:redis:redis:": ["cpe:2.3:a:redislabs:redis:"]},
        debian={},
    )


@pytest.fixture
def product_db(product_db_path):
    with ProductDatabase(str(product_db_path)) as db:
        yield db


@pytest.fixture
def vuln_db(vuln_db_path):
    with VulnDatabase(str(vuln_db_path)) as db:
        yield db


@pytest.fixture
def equivalence(resources_dir, product_db):
    return EquivalenceGraph(resources_dir, product_db.get_product_cpe_count)


@pytest.fixture
def config(product_db_path, vuln_db_path, resources_dir):
    return Config(
        vuln_database=vuln_db_path,
        product_database=product_db_path,
        resources_dir=resources_dir,
    )


@pytest.fixture
def search_kwargs(product_db, vuln_db, equivalence, config):
    return dict(product_db=product_db, vuln_db=vuln_db, equivalence=equivalence, config=config)


@pytest.fixture
def config_file(tmp_path, product_db_path, vuln_db_path, resources_dir):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps(
            {
                "VULN_DATABASE": {"NAME": vuln_db_path.name},
                "PRODUCT_DATABASE": {"NAME": product_db_path.name},
                "RESOURCES_DIR": resources_dir.name,
            }
        )
    )
    return path
