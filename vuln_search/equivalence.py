"""Equivalences between CPEs that denote the same product.

Three sources are combined into one symmetric adjacency map:

- ``deprecated-cpes.json``: NVD deprecations, optional
- ``man_equiv_cpes.json``: manually curated product aliases
- ``debian_equiv_cpes.json``: aliases maintained by the Debian security tracker

Keys and values are either product prefixes (``cpe:2.3:a:vendor:product:``)
or full CPEs for equivalences that only hold for one version.
"""

import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .cpe import get_cpe_prefix, is_cpe_equal
from .version import get_version_sections

logger = logging.getLogger(__name__)

DEPRECATED_CPES_FILE = "deprecated-cpes.json"
MAN_EQUIV_CPES_FILE = "man_equiv_cpes.json"
DEBIAN_EQUIV_CPES_FILE = "debian_equiv_cpes.json"

# share of a product's CPEs that must be deprecated to treat the whole product as renamed
FULL_DEPRECATION_THRESHOLD = 0.16

ProductCountLookup = Callable[[str], Optional[int]]
EquivalenceMap = Dict[str, List[str]]


def _add_edge(mapping: EquivalenceMap, source: str, target: str) -> None:
    targets = mapping.setdefault(source, [])
    if target not in targets:
        targets.append(target)


def build_deprecation_equivalences(
    deprecations: EquivalenceMap, product_count: ProductCountLookup
) -> EquivalenceMap:
    """Turn NVD deprecations into equivalences.

    When a large enough share of a product's CPEs was deprecated, the whole
    product prefix is linked to the replacing prefixes. Otherwise only the
    affected full CPEs are linked to their replacements.
    """
    by_product: Dict[str, EquivalenceMap] = {}
    for cpe, deprecated_by in deprecations.items():
        by_product.setdefault(get_cpe_prefix(cpe), {})[cpe] = deprecated_by

    equivalences: EquivalenceMap = {}
    for prefix, product_deprecations in by_product.items():
        count = product_count(prefix)
        if not count:
            continue

        if len(product_deprecations) >= count * FULL_DEPRECATION_THRESHOLD:
            replacing_prefixes: List[str] = []
            for deprecated_by_list in product_deprecations.values():
                for deprecated_by in deprecated_by_list:
                    other_prefix = get_cpe_prefix(deprecated_by)
                    if other_prefix != prefix and other_prefix not in replacing_prefixes:
                        replacing_prefixes.append(other_prefix)

            for other_prefix in replacing_prefixes:
                _add_edge(equivalences, prefix, other_prefix)
                _add_edge(equivalences, other_prefix, prefix)
            equivalences.setdefault(prefix, [])
        else:
            for full_cpe, deprecated_by_list in product_deprecations.items():
                for deprecated_by in deprecated_by_list:
                    if is_cpe_equal(full_cpe, deprecated_by):
                        continue
                    _add_edge(equivalences, full_cpe, deprecated_by)
                    _add_edge(equivalences, deprecated_by, full_cpe)

    return equivalences


def unite_equivalences(sources: List[EquivalenceMap]) -> EquivalenceMap:
    """Merge all sources and make every edge bidirectional."""
    united: EquivalenceMap = {}
    for source in sources:
        for cpe, others in source.items():
            united[cpe] = united.get(cpe, []) + list(others)

    for cpe in list(united):
        others = list(united[cpe])
        for other in others:
            # the other node gets the same group, with itself replaced by ``cpe``
            relevant = [cpe if item == other else item for item in others]
            if other not in united:
                united[other] = relevant
            elif cpe not in united[other]:
                united[other] = united[other] + relevant
    return united


class EquivalenceGraph:
    """Caller-owned cache of CPE equivalences.

    The graph is built on first use and stays unchanged afterwards, call
    :meth:`reload` to rebuild it after the source files changed.
    """

    def __init__(self, resources_dir, product_count: Optional[ProductCountLookup] = None):
        self.resources_dir = Path(resources_dir).expanduser()
        self.product_count = product_count or (lambda prefix: None)
        self.equivalences: EquivalenceMap = {}
        self.loaded = False

    @classmethod
    def from_mapping(cls, equivalences: EquivalenceMap) -> "EquivalenceGraph":
        """Create an already loaded graph from an in-memory mapping."""
        graph = cls(".")
        graph.equivalences = unite_equivalences([equivalences])
        graph.loaded = True
        return graph

    def _read_json(self, filename: str) -> EquivalenceMap:
        """Read a mapping of CPEs to lists of CPEs, dropping malformed entries."""
        with open(self.resources_dir / filename, "r", encoding="utf-8") as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"expected an object mapping CPEs to lists, got {type(data).__name__}")

        mapping: EquivalenceMap = {}
        for cpe, others in data.items():
            if isinstance(others, list) and all(isinstance(other, str) for other in others):
                mapping[cpe] = others
            else:
                logger.error(f"Skipping malformed entry for {cpe} in {filename}")
        return mapping

    def load(self) -> None:
        """Load all equivalence sources, a no-op once loaded."""
        if self.loaded:
            return

        sources: List[EquivalenceMap] = []
        try:
            deprecations = self._read_json(DEPRECATED_CPES_FILE)
            sources.append(build_deprecation_equivalences(deprecations, self.product_count))
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as e:
            logger.error(f"Error loading deprecated CPEs: {e}")

        for filename in (MAN_EQUIV_CPES_FILE, DEBIAN_EQUIV_CPES_FILE):
            try:
                sources.append(self._read_json(filename))
            except (OSError, ValueError) as e:
                logger.error(f"Error loading equivalent CPEs from {filename}: {e}")

        self.equivalences = unite_equivalences(sources)
        self.loaded = True
        logger.info(f"Loaded {len(self.equivalences)} CPE equivalence entries")

    def reload(self) -> None:
        """Rebuild the graph from the source files."""
        self.loaded = False
        self.load()

    def get_equivalent_prefixes(self, cpe_prefix: str) -> Set[str]:
        """Collect all prefixes transitively reachable from ``cpe_prefix``."""
        visited: Set[str] = set()
        stack = [cpe_prefix]
        while stack:
            current = stack.pop()
            if current in visited:
                continue
            visited.add(current)
            for other in self.equivalences.get(current, []):
                if other not in visited:
                    stack.append(other)
        return visited

    def expand(self, cpe: str) -> List[str]:
        """Return the CPE followed by all of its equivalent forms.

        Duplicates are possible, callers deduplicate before matching.
        """
        self.load()

        cpe_parts = cpe.split(":")
        cpe_prefix = get_cpe_prefix(cpe)
        version = cpe_parts[5] if len(cpe_parts) > 5 else "*"
        subversion = cpe_parts[6] if len(cpe_parts) > 6 else "*"

        cpes = [cpe]
        # e.g. 1.1.1k -> 1.1.1:k
        sections = get_version_sections(version)
        if len(sections) > 1 and subversion in ("*", "", "-") and len(cpe_parts) > 6:
            parts = list(cpe_parts)
            parts[5] = "".join(sections[:-1])
            parts[6] = sections[-1]
            cpes.append(":".join(parts))

        if subversion not in ("*", "", "-"):
            parts = list(cpe_parts)
            parts[5] = version + "-" + subversion
            parts[6] = "*"
            cpes.append(":".join(parts))

        equivalent_prefixes = self.get_equivalent_prefixes(cpe_prefix)
        equivalent_prefixes.discard(cpe_prefix)

        expanded = list(cpes)
        for variant in cpes:
            tail = ":".join(variant.split(":")[5:])
            for other in sorted(equivalent_prefixes):
                expanded.append(get_cpe_prefix(other) + tail)

        direct: List[str] = []
        for variant in expanded:
            direct += self.equivalences.get(variant, [])
        return expanded + direct
