"""
Unit tests for the version comparator.

Tests cover:
- Priority by stability tier, major and stage
- Malformed identifiers
- Sort order and key consistency
"""

import pytest

from schemabridge.versions.comparator import (
    Ordering,
    compare,
    is_newer,
    parse_version,
    sort_versions,
    version_key,
)


class TestParseVersion:
    """Tests for parse_version."""

    def test_stable(self):
        v = parse_version("v12")
        assert v.well_formed
        assert v.major == 12
        assert v.tier is None
        assert v.is_stable

    def test_beta(self):
        v = parse_version("v2beta3")
        assert v.well_formed
        assert (v.major, v.tier, v.stage) == (2, "beta", 3)
        assert not v.is_stable

    @pytest.mark.parametrize("name", ["foo1", "v0", "v01", "V1", "v1gamma1", "v1beta", "v1beta0", ""])
    def test_malformed(self, name):
        v = parse_version(name)
        assert not v.well_formed
        assert v.major is None

    def test_parse_is_memoised(self):
        assert parse_version("v3alpha1") is parse_version("v3alpha1")


class TestCompare:
    """Tests for compare()."""

    def test_major_numeric_not_lexical(self):
        assert compare("v10", "v2") is Ordering.GREATER
        assert compare("v2", "v10") is Ordering.LESS

    def test_stable_beats_beta(self):
        assert compare("v1", "v1beta2") is Ordering.GREATER

    def test_beta_beats_alpha_of_higher_major(self):
        assert compare("v1beta1", "v2alpha1") is Ordering.GREATER

    def test_stage_within_tier(self):
        assert compare("v2alpha1", "v2alpha2") is Ordering.LESS
        assert compare("v3beta2", "v3beta1") is Ordering.GREATER

    def test_equal_only_for_identical_strings(self):
        assert compare("v1", "v1") is Ordering.EQUAL
        assert compare("foo", "foo") is Ordering.EQUAL
        assert compare("foo1", "foo10") is not Ordering.EQUAL

    def test_well_formed_beats_malformed(self):
        assert compare("v1alpha1", "foo1") is Ordering.GREATER
        assert compare("foo1", "v1alpha1") is Ordering.LESS

    def test_malformed_ordered_alphabetically(self):
        assert compare("foo1", "foo10") is Ordering.GREATER
        assert compare("bar", "foo") is Ordering.GREATER

    def test_antisymmetric(self):
        names = ["v1", "v2", "v1beta1", "v1alpha2", "foo", "v01"]
        for a in names:
            for b in names:
                assert compare(a, b) == -compare(b, a)

    def test_is_newer(self):
        assert is_newer("v1", "v1beta1")
        assert not is_newer("v1beta1", "v1")


class TestSortVersions:
    """Tests for sort_versions and version_key."""

    def test_full_priority_order(self):
        expected = [
            "v10",
            "v2",
            "v1",
            "v11beta2",
            "v10beta3",
            "v3beta1",
            "v12alpha1",
            "v11alpha2",
            "foo1",
            "foo10",
        ]
        shuffled = ["foo10", "v3beta1", "v1", "v11alpha2", "v2", "foo1", "v12alpha1", "v10", "v10beta3", "v11beta2"]
        assert sort_versions(shuffled) == expected

    def test_key_agrees_with_compare(self):
        names = ["v1", "v1beta1", "v2alpha1", "foo"]
        for a in names:
            for b in names:
                if version_key(a) < version_key(b):
                    assert compare(a, b) is Ordering.GREATER
