"""CLI interface for vulnerability search."""

import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import click
from tabulate import tabulate

from . import __version__
from .config import get_default_paths, load_config
from .core import VulnSearch
from .cpe_search import search_cpes
from .database import ProductDatabase
from .enrichment import format_eol_status, get_epss_risk_level
from .models import BatchItemResult, SearchResult
from .xeol import XEOL_LISTING_URL, download_xeol_database


def _setup_logging(verbose: bool) -> None:
    """Attach a stream handler to the package logger."""
    logger = logging.getLogger("vuln_search")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - %(levelname)s - %(message)s"))
        logger.addHandler(handler)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)


def _display_potential_cpes(result: SearchResult) -> None:
    pot_cpes = result.pot_product_ids.get("cpe", [])
    if not pot_cpes:
        return
    click.echo("    Could not resolve the query confidently, potential CPEs:")
    rows = [[cpe, f"{abs(score):.4f}"] for cpe, score in pot_cpes]
    click.echo(tabulate(rows, headers=["CPE", "Score"], tablefmt="simple"))


def _display_result(query: str, result: SearchResult) -> None:
    """Print a search result in human readable form."""
    cpes = result.product_ids.get("cpe", [])
    click.secho(f"[+] {query} ({', '.join(cpes)})", fg="green", bold=True)
    if not cpes:
        _display_potential_cpes(result)

    if result.version_status:
        click.echo(f"    {format_eol_status(result.version_status)}")

    vulns = result.sorted_vulns()
    if not vulns:
        click.echo("    No known vulnerabilities")
        return

    for vuln in vulns:
        click.echo()
        click.secho(f"{vuln.id} (CVSSv{vuln.cvss_ver}/{vuln.cvss}): {vuln.match_reason.to_str()}", bold=True)
        if vuln.epss:
            click.echo(f"EPSS: {vuln.epss} ({get_epss_risk_level(vuln.epss)})")
        if vuln.cisa_known_exploited:
            click.secho("Actively exploited (CISA KEV)", fg="red")
        click.echo(vuln.description)
        click.echo(f"Reference: {vuln.href}")
        if vuln.exploits:
            click.echo("Exploits:  " + "\n           ".join(sorted(vuln.exploits)))
    click.echo()


def _write_output(text: str, output: Optional[Path]) -> None:
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(text)
        click.echo(f"Results written to {output}", err=True)
    else:
        click.echo(text)


@click.group()
@click.version_option(__version__)
def main() -> None:
    """Search known vulnerabilities of software products."""


@main.command()
@click.argument("queries", nargs=-1, required=True)
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Path to JSON config file",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["txt", "json"], case_sensitive=False),
    default="txt",
    help="Output format",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, writable=True, path_type=Path),
    help="Write results to file instead of stdout",
)
@click.option(
    "--ignore-general-product-vulns",
    is_flag=True,
    help="Skip vulnerabilities that affect the product in general when a version was given",
)
@click.option(
    "--include-single-version-vulns",
    is_flag=True,
    help="Include vulnerabilities only matched through a single higher version",
)
@click.option(
    "--include-patched",
    is_flag=True,
    help="Include vulnerabilities reported as patched for the queried version",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output",
)
def search(
    queries: Tuple[str, ...],
    config_file: Optional[Path],
    output_format: str,
    output: Optional[Path],
    ignore_general_product_vulns: bool,
    include_single_version_vulns: bool,
    include_patched: bool,
    verbose: bool,
) -> None:
    """
    Search vulnerabilities for one or more QUERIES.

    A query can be:
    - a product name and version (e.g. "jquery 3.1.2")
    - a CPE 2.3 string (e.g. cpe:2.3:a:jquery:jquery:3.1.2:*:*:*:*:*:*:*)
    - one or more comma-separated CVE or GHSA ids (e.g. CVE-2024-27286)
    """
    _setup_logging(verbose)
    try:
        config = load_config(config_file)
        with VulnSearch(config) as searcher:
            results: List[BatchItemResult] = searcher.search_batch(
                list(queries),
                ignore_general_product_vulns=ignore_general_product_vulns,
                include_single_version_vulns=include_single_version_vulns,
                include_patched=include_patched,
            )
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        sys.exit(1)

    if output_format.lower() == "json":
        data = {item.query: item.to_dict() for item in results}
        _write_output(json.dumps(data, indent=2, ensure_ascii=False), output)
    else:
        for item in results:
            if item.ok:
                _display_result(item.query, item.result)
            else:
                click.secho(f"[-] {item.query}: {item.error}", fg="red", err=True)

    if any(not item.ok for item in results):
        sys.exit(1)


@main.command()
@click.argument("query")
@click.option(
    "--config",
    "-c",
    "config_file",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
    help="Path to JSON config file",
)
@click.option("--count", "-n", type=int, help="Maximum number of CPEs to return")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def cpes(query: str, config_file: Optional[Path], count: Optional[int], verbose: bool) -> None:
    """Show the CPEs a QUERY resolves to."""
    _setup_logging(verbose)
    try:
        config = load_config(config_file)
        with ProductDatabase(str(config.product_database)) as product_db:
            result = search_cpes(
                query,
                product_db,
                count=count or config.cpe_search_count,
                threshold=config.cpe_search_threshold,
                threshold_alt=config.cpe_search_threshold_alt,
            )
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        sys.exit(1)

    if result["cpes"]:
        click.secho("Matching CPEs:", bold=True)
        click.echo(tabulate([[cpe, f"{score:.4f}"] for cpe, score in result["cpes"]], headers=["CPE", "Score"]))
    else:
        click.echo("No CPE matched the query confidently")
    if result["pot_cpes"]:
        click.secho("Potential CPEs:", bold=True)
        click.echo(tabulate([[cpe, f"{abs(score):.4f}"] for cpe, score in result["pot_cpes"]], headers=["CPE", "Score"]))


@main.command("download-xeol")
@click.argument("target", required=False, type=click.Path(dir_okay=False, path_type=Path))
@click.option("--url", default=XEOL_LISTING_URL, show_default=True, help="Database listing URL")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
def download_xeol(target: Optional[Path], url: str, verbose: bool) -> None:
    """Download the xeol end-of-life database to TARGET."""
    _setup_logging(verbose)
    target = target or get_default_paths()["xeol_database"]
    try:
        path = download_xeol_database(target, url)
    except Exception as e:
        click.echo(f"Error: {str(e)}", err=True)
        sys.exit(1)

    click.secho(f"Xeol database downloaded to {path}", fg="green")
    click.echo("Enable it in your config with:")
    click.echo(json.dumps({"XEOL_DATABASE": {"ENABLED": True, "DATABASE_PATH": str(path)}}, indent=2))


if __name__ == "__main__":
    main()
