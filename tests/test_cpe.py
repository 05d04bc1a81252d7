"""Tests for CPE string helpers."""

from vuln_search.cpe import (
    cpe_matches_prefix,
    get_cpe_prefix,
    get_cpe_version,
    has_concrete_version,
    is_cpe_equal,
    is_cpe_string,
    pad_cpe,
    prefix_range_upper_bound,
)

JQUERY = "cpe:2.3:a:jquery:jquery:3.1.2:*:*:*:*:*:*:*"


class TestCPEStrings:
    """Test CPE parsing helpers."""

    def test_is_cpe_string(self):
        assert is_cpe_string(JQUERY)
        assert is_cpe_string("cpe:2.3:a:jquery:jquery")
        assert not is_cpe_string("jquery 3.1.2")
        assert not is_cpe_string("cpe:/a:jquery:jquery:3.1.2")

    def test_pad_cpe(self):
        padded = pad_cpe("cpe:2.3:a:jquery:jquery:3.1.2")
        assert padded == JQUERY
        assert len(padded.split(":")) == 13
        assert pad_cpe(JQUERY) == JQUERY

    def test_prefix_and_version(self):
        assert get_cpe_prefix(JQUERY) == "cpe:2.3:a:jquery:jquery:"
        assert get_cpe_version(JQUERY) == "3.1.2"
        assert get_cpe_version("cpe:2.3:a:jquery:jquery") == "*"

    def test_has_concrete_version(self):
        assert has_concrete_version(JQUERY)
        assert not has_concrete_version("cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*")
        assert not has_concrete_version("cpe:2.3:a:jquery:jquery:-:*:*:*:*:*:*:*")

    def test_prefix_range_upper_bound(self):
        assert prefix_range_upper_bound("cpe:2.3:a:jquery:jquery:") == "cpe:2.3:a:jquery:jquery;"


class TestCPEEquality:
    """Test wildcard aware CPE comparison."""

    def test_reflexive(self):
        assert is_cpe_equal(JQUERY, JQUERY)

    def test_wildcard_matches_anything(self):
        general = "cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*"
        assert is_cpe_equal(general, JQUERY)
        assert is_cpe_equal(JQUERY, general)

    def test_different_versions(self):
        other = "cpe:2.3:a:jquery:jquery:3.5.0:*:*:*:*:*:*:*"
        assert not is_cpe_equal(JQUERY, other)
        assert not is_cpe_equal(other, JQUERY)

    def test_matches_prefix(self):
        assert cpe_matches_prefix(JQUERY, "cpe:2.3:a:jquery:jquery:*:*:*:*:*:*:*:*")
        assert not cpe_matches_prefix(JQUERY, "cpe:2.3:a:jquery:jquery_ui:*:*:*:*:*:*:*:*")
        assert not cpe_matches_prefix("cpe:2.3:a", JQUERY)
