"""
Tests for release filtering and latest-version selection.
"""

from anyvm.core.interfaces import Version, VersionSpec
from anyvm.core.version_utils import (
    Release,
    filter_releases,
    group_versions_by_major,
    parse_version,
    select_latest,
    to_versions,
)


def _releases():
    return [
        Release("18.20.4", "18", lts=True),
        Release("20.9.0", "20", lts=True),
        Release("20.11.1", "20", lts=True),
        Release("21.7.3", "21"),
        Release("22.1.0", "22"),
    ]


class TestParseVersion:
    """Test numeric version parsing."""

    def test_numeric_components(self):
        """Test that numeric parts become an int tuple."""
        assert parse_version("1.22.3") == (1, 22, 3)
        assert parse_version("v20.11.1") == (20, 11, 1)

    def test_no_digits(self):
        """Test that non-numeric strings sort first."""
        assert parse_version("latest") == (0,)

    def test_numeric_ordering(self):
        """Test that 1.10 sorts after 1.9."""
        assert parse_version("1.10.0") > parse_version("1.9.9")


class TestSelectLatest:
    """Test the resolution algorithm."""

    def test_latest(self):
        """Test that an empty spec selects the highest version."""
        assert select_latest(_releases(), VersionSpec()).version == "22.1.0"

    def test_latest_within_major(self):
        """Test that a major filter selects the highest version of that major."""
        assert select_latest(_releases(), VersionSpec(major="20")).version == "20.11.1"

    def test_latest_lts(self):
        """Test that lts_only skips non-LTS releases."""
        assert select_latest(_releases(), VersionSpec(lts_only=True)).version == "20.11.1"

    def test_explicit_version(self):
        """Test that an explicit version selects exactly that release."""
        assert select_latest(_releases(), VersionSpec(version="20.9.0")).version == "20.9.0"

    def test_not_found(self):
        """Test that no match returns None."""
        assert select_latest(_releases(), VersionSpec(major="99")) is None
        assert select_latest([], VersionSpec()) is None

    def test_custom_sort_key(self):
        """Test that provider sort keys override numeric parsing."""
        releases = [
            Release("1.22rc1", "1", sort_key=(1, 22, 0, 1, 1)),
            Release("1.22.0", "1", sort_key=(1, 22, 0, 2, 0)),
        ]
        assert select_latest(releases, VersionSpec()).version == "1.22.0"


class TestVersionLists:
    """Test conversion and grouping of version lists."""

    def test_to_versions_sorted_and_deduplicated(self):
        """Test ascending order without duplicates."""
        releases = _releases() + [Release("20.11.1", "20", lts=True)]
        versions = to_versions(reversed(releases))
        assert [v.version for v in versions] == ["18.20.4", "20.9.0", "20.11.1", "21.7.3", "22.1.0"]

    def test_filter_releases(self):
        """Test filtering by major."""
        assert [r.version for r in filter_releases(_releases(), VersionSpec(major="20"))] == ["20.9.0", "20.11.1"]

    def test_group_by_major(self):
        """Test that groups are ordered newest first with newest versions first."""
        versions = [
            Version("20.9.0", "20", lts=True),
            Version("20.11.1", "20", lts=True),
            Version("22.1.0", "22"),
        ]
        groups = group_versions_by_major(versions)
        assert [g["major_version"] for g in groups] == ["22", "20"]
        assert [v.version for v in groups[1]["versions"]] == ["20.11.1", "20.9.0"]
        assert groups[1]["has_lts"] is True
        assert groups[0]["has_lts"] is False
