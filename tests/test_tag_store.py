"""
Tests for the on-disk tag store and its reservation protocol.
"""

import errno
import os
import threading
from unittest.mock import patch

import pytest

from anyvm.core.link_manager import MODE_COPY, MODE_LINK, LinkManager
from anyvm.core.tag_store import AlreadyExists, TagNotFound, TagStorageError, TagStore
from anyvm.utils.input_validator import InputValidationError


@pytest.fixture
def store(data_root):
    return TagStore(data_root, "node")


def _install(store, tag, content="x"):
    staging = store.reserve(tag)
    source = staging / "extracted"
    source.mkdir()
    (source / "VERSION").write_text(content)
    try:
        return store.commit(tag, source)
    finally:
        store.release(staging)


class TestLayout:
    """Test the directory layout."""

    def test_paths(self, store, data_root):
        """Test the provider/tags/<tag> mapping."""
        assert store.tag_dir("20.1.0-x64-linux") == data_root / "node" / "tags" / "20.1.0-x64-linux"
        assert store.aliases_dir == data_root / "node" / "aliases"
        assert store.copies_dir == data_root / "node" / "copies"
        assert store.staging_dir("20.1.0") == data_root / "node" / "tags" / ".tmp.20.1.0"

    @pytest.mark.parametrize("tag", ["", ".", "..", "a/b", "a\\b", ".tmp.x"])
    def test_invalid_tags(self, store, tag):
        """Test that unsafe tag names are rejected."""
        with pytest.raises(InputValidationError):
            store.tag_dir(tag)

    def test_invalid_provider(self, data_root):
        """Test that provider names must be simple identifiers."""
        with pytest.raises(InputValidationError):
            TagStore(data_root, "../node")


class TestReserveCommit:
    """Test the install protocol."""

    def test_install_and_list(self, store):
        """Test that committed tags are listed and staging is gone."""
        path = _install(store, "20.1.0")
        assert (path / "VERSION").read_text() == "x"
        assert store.exists("20.1.0")
        assert store.list_tags() == ["20.1.0"]
        assert not store.staging_dir("20.1.0").exists()

    def test_reserve_existing_tag(self, store):
        """Test that reserving an installed tag raises AlreadyExists."""
        _install(store, "20.1.0")
        with pytest.raises(AlreadyExists) as exc_info:
            store.reserve("20.1.0")
        assert not exc_info.value.installing

    def test_reserve_in_progress(self, store):
        """Test that a second reservation of an in-flight tag raises AlreadyExists."""
        store.reserve("20.1.0")
        with pytest.raises(AlreadyExists) as exc_info:
            store.reserve("20.1.0")
        assert exc_info.value.installing

    def test_update_replaces(self, store):
        """Test that replace=True swaps in the new content."""
        _install(store, "20.1.0", "old")
        staging = store.reserve("20.1.0", replace=True)
        source = staging / "extracted"
        source.mkdir()
        (source / "VERSION").write_text("new")
        store.commit("20.1.0", source, replace=True)
        store.release(staging)
        assert (store.tag_dir("20.1.0") / "VERSION").read_text() == "new"
        assert store.list_tags() == ["20.1.0"]
        assert [p.name for p in store.tags_dir.iterdir()] == ["20.1.0"]

    def test_commit_without_replace(self, store, tmp_path):
        """Test that committing over an existing tag without replace fails."""
        _install(store, "20.1.0", "old")
        source = tmp_path / "other"
        source.mkdir()
        with pytest.raises(AlreadyExists):
            store.commit("20.1.0", source)
        assert (store.tag_dir("20.1.0") / "VERSION").read_text() == "old"

    def test_concurrent_reserve(self, store):
        """Test that exactly one of many simultaneous reservations wins."""
        barrier = threading.Barrier(8)
        results = []
        lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                store.reserve("20.1.0")
                outcome = "won"
            except AlreadyExists:
                outcome = "lost"
            with lock:
                results.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("won") == 1
        assert results.count("lost") == 7
        assert store.staging_dir("20.1.0").is_dir()

    def test_loser_does_not_corrupt_winner(self, store):
        """Test that a losing installer leaves the winner's staging untouched."""
        staging = store.reserve("20.1.0")
        (staging / "download.part").write_bytes(b"partial")
        with pytest.raises(AlreadyExists):
            store.reserve("20.1.0")
        assert (staging / "download.part").read_bytes() == b"partial"


class TestListRemove:
    """Test listing with aliases and removal."""

    def test_list_with_aliases(self, store):
        """Test that each entry reports the link aliases targeting it."""
        _install(store, "20.1.0")
        _install(store, "22.0.0")
        links = LinkManager(store.aliases_dir, store.copies_dir)
        links.set_alias("default", MODE_LINK, store.tag_dir("20.1.0"))
        links.set_alias("copy", MODE_COPY, store.tag_dir("20.1.0"))

        entries = {e.tag: e for e in store.list(links)}
        assert entries["20.1.0"].aliases == ["default"]
        assert entries["22.0.0"].aliases == []

    def test_staging_hidden(self, store):
        """Test that in-flight installs are not listed."""
        store.reserve("20.1.0")
        assert store.list_tags() == []

    def test_remove(self, store):
        """Test removing a tag and removing an unknown tag."""
        _install(store, "20.1.0")
        store.remove("20.1.0")
        assert not store.exists("20.1.0")
        with pytest.raises(TagNotFound):
            store.remove("20.1.0")

    def test_clean_staging(self, store):
        """Test that leftover staging directories are removed."""
        staging = store.reserve("20.1.0")
        assert store.clean_staging() == [staging]
        assert not staging.exists()


class TestStorageErrors:
    """Test that filesystem failures surface as TagStorageError."""

    def test_remove_failure(self, store):
        """Test that a refused delete raises TagStorageError."""
        _install(store, "20.1.0")
        error = PermissionError(errno.EACCES, "Permission denied")
        with patch("anyvm.core.tag_store.shutil.rmtree", side_effect=error):
            with pytest.raises(TagStorageError):
                store.remove("20.1.0")
        assert store.exists("20.1.0")

    def test_commit_failure(self, store, tmp_path):
        """Test that a refused move raises TagStorageError."""
        source = tmp_path / "extracted"
        source.mkdir()
        error = OSError(errno.EXDEV, "Invalid cross-device link")
        with patch("anyvm.core.tag_store.os.rename", side_effect=error):
            with pytest.raises(TagStorageError):
                store.commit("20.1.0", source)
        assert not store.exists("20.1.0")

    def test_failed_replace_keeps_old_tag(self, store, tmp_path):
        """Test that a refused replace restores the installed tag."""
        _install(store, "20.1.0", "old")
        source = tmp_path / "extracted"
        source.mkdir()
        real_replace = os.replace
        calls = []

        def flaky_replace(src, dst):
            calls.append(dst)
            if len(calls) == 2:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            real_replace(src, dst)

        with patch("anyvm.core.tag_store.os.replace", side_effect=flaky_replace):
            with pytest.raises(TagStorageError):
                store.commit("20.1.0", source, replace=True)
        assert (store.tag_dir("20.1.0") / "VERSION").read_text() == "old"
