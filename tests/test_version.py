"""Tests for version parsing and comparison."""

import pytest

from vuln_search.version import compare_versions, get_version_sections, is_version_in_range, parse_version


class TestParseVersion:
    """Test version parsing."""

    def test_numeric_segments(self):
        assert parse_version("2.4.39") == [2, 4, 39]

    def test_mixed_segments(self):
        assert parse_version("1.1.1k") == [1, 1, "1k"]
        assert parse_version("7.4-P1") == [7, 4, "p1"]

    def test_leading_zero_stays_textual(self):
        assert parse_version("1.01") == [1, "01"]

    def test_number_input(self):
        """Integers parse the same as their string form."""
        assert parse_version(2024) == parse_version("2024") == [2024]

    @pytest.mark.parametrize("version", [None, "", "*", "  "])
    def test_unset_versions(self, version):
        assert parse_version(version) == []


class TestCompareVersions:
    """Test version ordering."""

    @pytest.mark.parametrize(
        "first, second, expected",
        [
            ("1.0", "1.0.0", 0),
            ("2.4.39", "2.4.4", 1),
            ("3.1.2", "3.5.0", -1),
            ("1.1.1k", "1.1.1a", 1),
            ("10", "9", 1),
        ],
    )
    def test_ordering(self, first, second, expected):
        assert compare_versions(first, second) == expected

    @pytest.mark.parametrize("first, second", [("1.2", "1.10"), ("2.0a", "2.0b"), ("6.0", "6.0.14")])
    def test_antisymmetric(self, first, second):
        assert compare_versions(first, second) == -compare_versions(second, first)

    def test_accepts_parsed_versions(self):
        assert compare_versions([1, 2], "1.2.0") == 0


class TestVersionRange:
    """Test range membership."""

    def test_inclusive_bounds(self):
        assert is_version_in_range("1.2", "1.2", True, "3.5.0", False)
        assert not is_version_in_range("1.2", "1.2", False, "3.5.0", False)

    def test_exclusive_end(self):
        assert not is_version_in_range("3.5.0", "1.2", True, "3.5.0", False)
        assert is_version_in_range("3.5.0", "1.2", True, "3.5.0", True)

    def test_open_bounds(self):
        assert is_version_in_range("0.1", "", False, "3.4.0", False)
        assert is_version_in_range("99", "1.0", True, None, False)
        assert is_version_in_range("5", None, False, "*", False)

    def test_unset_version_never_matches(self):
        assert not is_version_in_range("*", "1.0", True, "2.0", True)
        assert not is_version_in_range("", None, False, None, False)


class TestVersionSections:
    """Test splitting versions into letter and number runs."""

    def test_sections(self):
        assert get_version_sections("1.1.1k") == ["1.1.1", "k"]
        assert get_version_sections("7.4p1") == ["7.4", "p", "1"]

    def test_unset(self):
        assert get_version_sections("*") == []
        assert get_version_sections(None) == []


class TestRangeProperties:
    """Test that range membership agrees with compare_versions."""

    VERSIONS = ["0.9", "1.0", "1.0.0", "1.2", "1.10", "2.0a", "2.0b", "3.5.0", "10"]

    @pytest.mark.parametrize("start_including", [True, False])
    @pytest.mark.parametrize("end_including", [True, False])
    def test_matches_comparison(self, start_including, end_including):
        for version in self.VERSIONS:
            for start in self.VERSIONS:
                for end in self.VERSIONS:
                    lower = compare_versions(version, start)
                    upper = compare_versions(version, end)
                    expected = (lower > 0 or (lower == 0 and start_including)) and (
                        upper < 0 or (upper == 0 and end_including)
                    )
                    assert is_version_in_range(version, start, start_including, end, end_including) == expected

    def test_reflexive(self):
        for version in self.VERSIONS:
            assert compare_versions(version, version) == 0
