"""Tests for the JSON-backed local store.

Covers:
- create/load/update/delete round trips and persistence across instances
- Tombstones queued by deletes and renames, cleared by re-creation
- Renames forgetting sync markers; sync moves leaving no tombstone
- Folder listing, renaming and deletion
- Lookups by remote id and fingerprint
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from gitnote_sync.sync.fingerprint import git_blob_sha
from gitnote_sync.sync.models import (
    DeleteTombstone,
    FileKind,
    RenameTombstone,
)
from gitnote_sync.sync.store import JsonLocalStore


@pytest.fixture
def store(tmp_path: Path) -> JsonLocalStore:
    return JsonLocalStore(tmp_path / "store.json")


# ---------------------------------------------------------------------------
# File CRUD
# ---------------------------------------------------------------------------


class TestFiles:
    """Basic file operations."""

    def test_create_and_load(self, store: JsonLocalStore):
        """create_file() returns an id that loads the new file."""
        file_id = store.create_file("notes/a.md", "# A")
        repo_file = store.load_file_by_id(file_id)
        assert repo_file.path == "notes/a.md"
        assert repo_file.content == "# A"
        assert repo_file.kind is FileKind.MARKDOWN
        assert repo_file.mime == "text/markdown"
        assert repo_file.last_remote_id is None

    def test_binary_mime_is_guessed(self, store: JsonLocalStore):
        """The MIME type is derived from the extension."""
        file_id = store.create_file("logo.png", "AAAA", FileKind.BINARY)
        assert store.load_file_by_id(file_id).mime == "image/png"

    def test_create_on_occupied_path_fails(self, store: JsonLocalStore):
        """Two files never share a path."""
        store.create_file("a.md", "one")
        with pytest.raises(ValueError, match="already exists"):
            store.create_file("a.md", "two")

    def test_loaded_files_are_copies(self, store: JsonLocalStore):
        """Mutating a loaded file does not touch the store."""
        file_id = store.create_file("a.md", "one")
        store.load_file_by_id(file_id).content = "changed"
        assert store.load_file_by_id(file_id).content == "one"

    def test_list_files_sorted_by_path(self, store: JsonLocalStore):
        """list_files() is ordered by path."""
        store.create_file("b.md", "")
        store.create_file("a.md", "")
        assert [f.path for f in store.list_files()] == ["a.md", "b.md"]

    def test_update_file(self, store: JsonLocalStore):
        """update_file() replaces the content."""
        file_id = store.create_file("a.md", "one")
        store.update_file(file_id, "two")
        assert store.load_file_by_id(file_id).content == "two"

    def test_update_unknown_id_is_ignored(self, store: JsonLocalStore):
        """Updating a missing id is a no-op."""
        store.update_file("missing", "two")
        assert store.list_files() == []

    def test_persists_across_instances(self, tmp_path: Path):
        """Files, markers and tombstones survive a reload."""
        path = tmp_path / "store.json"
        first = JsonLocalStore(path)
        file_id = first.create_file("a.md", "one")
        first.mark_synced(file_id, remote_id="r1", synced_fingerprint="f1")
        first.delete_file_by_id(first.create_file("b.md", "gone"))

        second = JsonLocalStore(path)
        repo_file = second.load_file_by_id(file_id)
        assert repo_file.last_remote_id == "r1"
        assert repo_file.last_synced_fingerprint == "f1"
        assert [t.path for t in second.list_tombstones()] == ["b.md"]

    def test_unsupported_version_is_rejected(self, tmp_path: Path):
        """A store document from another version is refused."""
        path = tmp_path / "store.json"
        path.write_text(json.dumps({"version": 99, "files": []}))
        with pytest.raises(ValueError, match="Unsupported store version"):
            JsonLocalStore(path)

    def test_no_temp_files_left_behind(self, tmp_path: Path):
        """Atomic saves leave only the store file behind."""
        store = JsonLocalStore(tmp_path / "store.json")
        store.create_file("a.md", "one")
        assert [p.name for p in tmp_path.iterdir()] == ["store.json"]


# ---------------------------------------------------------------------------
# Tombstones
# ---------------------------------------------------------------------------


class TestTombstones:
    """Deletes and renames leave tombstones for the sync engine."""

    def test_delete_queues_tombstone_with_remote_id(self, store: JsonLocalStore):
        """A delete records the last remote id in its tombstone."""
        file_id = store.create_file("a.md", "one")
        store.mark_synced(file_id, remote_id="r1")
        store.delete_file_by_id(file_id)
        [tombstone] = store.list_tombstones()
        assert isinstance(tombstone, DeleteTombstone)
        assert tombstone.path == "a.md"
        assert tombstone.last_remote_id == "r1"

    def test_create_clears_delete_tombstone(self, store: JsonLocalStore):
        """Re-creating a deleted path drops its delete tombstone."""
        store.delete_file_by_id(store.create_file("a.md", "one"))
        store.create_file("a.md", "again")
        assert store.list_tombstones() == []

    def test_rename_queues_tombstone_and_forgets_markers(
        self, store: JsonLocalStore
    ):
        """A rename queues a tombstone and clears sync markers."""
        file_id = store.create_file("a.md", "one")
        store.mark_synced(file_id, remote_id="r1", synced_fingerprint="f1")
        store.rename_file_by_id(file_id, "b.md")

        repo_file = store.load_file_by_id(file_id)
        assert repo_file.path == "b.md"
        assert repo_file.last_remote_id is None
        assert repo_file.last_synced_fingerprint is None
        [tombstone] = store.list_tombstones()
        assert isinstance(tombstone, RenameTombstone)
        assert (tombstone.from_path, tombstone.to_path) == ("a.md", "b.md")
        assert tombstone.last_remote_id == "r1"

    def test_rename_onto_existing_file_fails(self, store: JsonLocalStore):
        """A rename cannot overwrite another file."""
        file_id = store.create_file("a.md", "one")
        store.create_file("b.md", "two")
        with pytest.raises(ValueError):
            store.rename_file_by_id(file_id, "b.md")

    def test_move_leaves_no_tombstone(self, store: JsonLocalStore):
        """Sync moves keep markers and queue nothing."""
        file_id = store.create_file("a.md", "one")
        store.mark_synced(file_id, remote_id="r1")
        store.move_file_path(file_id, "b.md")
        assert store.list_tombstones() == []
        assert store.load_file_by_id(file_id).last_remote_id == "r1"

    def test_remove_tombstones_by_predicate(self, store: JsonLocalStore):
        """remove_tombstones() drops only matching entries."""
        store.delete_file_by_id(store.create_file("a.md", ""))
        store.delete_file_by_id(store.create_file("b.md", ""))
        store.remove_tombstones(lambda t: t.path == "a.md")
        assert [t.path for t in store.list_tombstones()] == ["b.md"]


# ---------------------------------------------------------------------------
# Folders
# ---------------------------------------------------------------------------


class TestFolders:
    def test_list_folders_includes_ancestors(self, store: JsonLocalStore):
        """Every ancestor directory of a file is listed."""
        store.create_file("a/b/c.md", "")
        store.create_file("d/e.md", "")
        store.create_file("top.md", "")
        assert store.list_folders() == ["a", "a/b", "d"]

    def test_rename_folder(self, store: JsonLocalStore):
        """Files under the folder move; similar prefixes do not."""
        store.create_file("notes/a.md", "")
        store.create_file("notes/sub/b.md", "")
        store.create_file("notesy.md", "")
        store.rename_folder("notes/", "archive")
        assert [f.path for f in store.list_files()] == [
            "archive/a.md",
            "archive/sub/b.md",
            "notesy.md",
        ]
        assert len(store.list_tombstones()) == 2

    def test_delete_folder(self, store: JsonLocalStore):
        """Deleting a folder deletes and tombstones every file in it."""
        store.create_file("notes/a.md", "")
        store.create_file("keep.md", "")
        store.delete_folder("notes")
        assert [f.path for f in store.list_files()] == ["keep.md"]
        assert [t.path for t in store.list_tombstones()] == ["notes/a.md"]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


class TestLookups:
    def test_find_by_path(self, store: JsonLocalStore):
        """find_file_by_path() returns the file or None."""
        file_id = store.create_file("a.md", "")
        assert store.find_file_by_path("a.md").id == file_id
        assert store.find_file_by_path("b.md") is None

    def test_find_by_remote_id_returns_all_matches(self, store: JsonLocalStore):
        """Every file synced against a remote id is returned by path."""
        first = store.create_file("b.md", "x")
        second = store.create_file("a.md", "x")
        store.mark_synced(first, remote_id="r1")
        store.mark_synced(second, remote_id="r1")
        assert [f.path for f in store.find_by_remote_id("r1")] == ["a.md", "b.md"]
        assert store.find_by_remote_id("r2") == []

    def test_find_by_fingerprint(self, store: JsonLocalStore):
        """Fingerprint lookups see through line-ending differences."""
        store.create_file("a.md", "hello\r\n")
        store.create_file("b.md", "other")
        matches = store.find_by_fingerprint(git_blob_sha(b"hello\n"))
        assert [f.path for f in matches] == ["a.md"]

    def test_mark_synced_only_updates_given_markers(self, store: JsonLocalStore):
        """Omitted markers keep their previous value."""
        file_id = store.create_file("a.md", "")
        store.mark_synced(file_id, remote_id="r1", synced_fingerprint="f1")
        store.mark_synced(file_id, synced_fingerprint="f2")
        repo_file = store.load_file_by_id(file_id)
        assert repo_file.last_remote_id == "r1"
        assert repo_file.last_synced_fingerprint == "f2"
