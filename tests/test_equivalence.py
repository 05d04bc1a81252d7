"""Tests for CPE equivalences."""

import json
import logging

import pytest

from conftest import write_resources
from vuln_search.core import search_vulns
from vuln_search.equivalence import EquivalenceGraph, build_deprecation_equivalences, unite_equivalences

OLD = "cpe:2.3:a:oldvendor:product:"
NEW = "cpe:2.3:a:newvendor:product:"


def full(prefix, version="1.0"):
    return prefix + version + ":*:*:*:*:*:*:*"


class TestDeprecations:
    """Test turning NVD deprecations into equivalences."""

    def test_product_level_above_threshold(self):
        equivalences = build_deprecation_equivalences({full(OLD): [full(NEW)]}, lambda prefix: 2)
        assert equivalences[OLD] == [NEW]
        assert equivalences[NEW] == [OLD]

    def test_cpe_level_below_threshold(self):
        equivalences = build_deprecation_equivalences({full(OLD): [full(NEW)]}, lambda prefix: 100)
        assert OLD not in equivalences
        assert equivalences[full(OLD)] == [full(NEW)]
        assert equivalences[full(NEW)] == [full(OLD)]

    def test_threshold_boundary(self):
        deprecations = {full(OLD, f"1.{i}"): [full(NEW, f"1.{i}")] for i in range(4)}

        equivalences = build_deprecation_equivalences(deprecations, lambda prefix: 25)
        assert equivalences[OLD] == [NEW]
        assert full(OLD, "1.0") not in equivalences

        equivalences = build_deprecation_equivalences(deprecations, lambda prefix: 26)
        assert OLD not in equivalences
        assert equivalences[full(OLD, "1.0")] == [full(NEW, "1.0")]

    def test_self_deprecation_is_ignored(self):
        equivalences = build_deprecation_equivalences(
            {full(OLD): [full(OLD), full(NEW)]}, lambda prefix: 100
        )
        assert equivalences[full(OLD)] == [full(NEW)]
        assert build_deprecation_equivalences({full(OLD): [full(OLD)]}, lambda prefix: 100) == {}

    def test_unknown_product_is_skipped(self):
        assert build_deprecation_equivalences({full(OLD): [full(NEW)]}, lambda prefix: None) == {}
        assert build_deprecation_equivalences({full(OLD): [full(NEW)]}, lambda prefix: 0) == {}


class TestUniteEquivalences:
    """Test merging of equivalence sources."""

    def test_edges_become_bidirectional(self):
        united = unite_equivalences([{"a": ["b", "c"]}])
        assert united["b"] == ["a", "c"]
        assert united["c"] == ["b", "a"]

    def test_sources_are_concatenated(self):
        united = unite_equivalences([{"a": ["b"]}, {"a": ["c"]}])
        assert united["a"] == ["b", "c"]


class TestEquivalenceGraph:
    """Test expansion of CPEs to their equivalent forms."""

    def test_reflexive(self):
        graph = EquivalenceGraph.from_mapping({})
        cpe = full(OLD)
        assert graph.expand(cpe) == [cpe]

    def test_symmetric(self):
        graph = EquivalenceGraph.from_mapping({OLD: [NEW]})
        assert full(NEW) in graph.expand(full(OLD))
        assert full(OLD) in graph.expand(full(NEW))

    def test_transitive(self):
        third = "cpe:2.3:a:thirdvendor:product:"
        graph = EquivalenceGraph.from_mapping({OLD: [NEW], NEW: [third]})
        expanded = graph.expand(full(OLD))
        assert full(NEW) in expanded
        assert full(third) in expanded
        assert full(OLD) in graph.expand(full(third))

    def test_cycle_terminates(self):
        graph = EquivalenceGraph.from_mapping({OLD: [NEW], NEW: [OLD]})
        assert graph.get_equivalent_prefixes(OLD) == {OLD, NEW}

    def test_version_split(self):
        graph = EquivalenceGraph.from_mapping({})
        expanded = graph.expand("cpe:2.3:a:openssl:openssl:1.1.1k:*:*:*:*:*:*:*")
        assert "cpe:2.3:a:openssl:openssl:1.1.1:k:*:*:*:*:*:*" in expanded

    def test_subversion_join(self):
        graph = EquivalenceGraph.from_mapping({})
        expanded = graph.expand("cpe:2.3:a:vendor:product:1.0:beta:*:*:*:*:*:*")
        assert "cpe:2.3:a:vendor:product:1.0-beta:*:*:*:*:*:*:*" in expanded

    def test_full_cpe_equivalence(self):
        graph = EquivalenceGraph.from_mapping({full(OLD): [full(NEW, "2.0")]})
        assert full(NEW, "2.0") in graph.expand(full(OLD))
        assert full(NEW, "2.0") not in graph.expand(full(OLD, "1.1"))

    def test_loads_resource_files(self, tmp_path):
        resources = write_resources(
            tmp_path / "resources",
            manual={OLD: [NEW]},
            debian={},
            deprecated={full("cpe:2.3:a:legacy:tool:"): [full("cpe:2.3:a:modern:tool:")]},
        )
        graph = EquivalenceGraph(resources, lambda prefix: 1)
        assert full(NEW) in graph.expand(full(OLD))
        assert full("cpe:2.3:a:modern:tool:") in graph.expand(full("cpe:2.3:a:legacy:tool:"))

    def test_missing_files(self, tmp_path, caplog):
        graph = EquivalenceGraph(tmp_path / "missing")
        with caplog.at_level(logging.ERROR, logger="vuln_search"):
            assert graph.expand(full(OLD)) == [full(OLD)]
        assert "man_equiv_cpes.json" in caplog.text
        assert "deprecated" not in caplog.text

    @pytest.mark.parametrize("content", ["null", "[]", '"cpe:2.3:a:redis:redis:"'])
    def test_malformed_file_is_skipped(self, tmp_path, caplog, content):
        resources = write_resources(tmp_path / "resources", manual={OLD: [NEW]})
        (resources / "debian_equiv_cpes.json").write_text(content)
        graph = EquivalenceGraph(resources)
        with caplog.at_level(logging.ERROR, logger="vuln_search"):
            assert full(NEW) in graph.expand(full(OLD))
        assert "debian_equiv_cpes.json" in caplog.text

    def test_malformed_entries_are_skipped(self, tmp_path, caplog):
        third = "cpe:2.3:a:thirdvendor:product:"
        resources = write_resources(
            tmp_path / "resources",
            manual={OLD: [NEW], third: "cpe:2.3:a:other:product:", "cpe:2.3:a:x:y:": [1]},
            debian={},
        )
        graph = EquivalenceGraph(resources)
        with caplog.at_level(logging.ERROR, logger="vuln_search"):
            assert full(NEW) in graph.expand(full(OLD))
            assert graph.expand(full(third)) == [full(third)]
        assert "Skipping malformed entry" in caplog.text

    def test_malformed_file_in_search(self, tmp_path, search_kwargs):
        resources = write_resources(
            tmp_path / "broken_resources",
            manual={"cpe:2.3:a:redis:redis:": ["cpe:2.3:a:redislabs:redis:"]},
        )
        (resources / "debian_equiv_cpes.json").write_text("null")
        search_kwargs["equivalence"] = EquivalenceGraph(resources)

        result = search_vulns("redis 6.0", **search_kwargs)
        assert result.product_ids["cpe"] == [
            "cpe:2.3:a:redis:redis:6.0:*:*:*:*:*:*:*",
            "cpe:2.3:a:redislabs:redis:6.0:*:*:*:*:*:*:*",
        ]
        assert "CVE-2022-0543" in result.vulns

    def test_cached_until_reload(self, tmp_path):
        resources = write_resources(tmp_path / "resources", manual={}, debian={})
        graph = EquivalenceGraph(resources)
        assert graph.expand(full(OLD)) == [full(OLD)]

        (resources / "man_equiv_cpes.json").write_text(json.dumps({OLD: [NEW]}))
        assert graph.expand(full(OLD)) == [full(OLD)]

        graph.reload()
        assert full(NEW) in graph.expand(full(OLD))
