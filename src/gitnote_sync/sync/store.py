"""Local document store: the contract the sync engine consumes, and a
JSON-file implementation of it.

The engine only talks to ``LocalStore``.  ``JsonLocalStore`` keeps every
file, its sync markers and the tombstone queue in one JSON document.

Key design choices:

* **Atomic writes** -- every mutation rewrites the document through a temp
  file and ``os.replace()`` so readers never see partial data.
* **Tombstones** -- editor-facing deletes and renames of a file append a
  tombstone; sync-internal moves (``move_file_path``) do not.  Creating a
  file at a path drops any pending delete tombstone for that path.
* **Renames forget sync markers** -- a renamed file is pushed as a new
  path; the rename tombstone takes care of the old one.
"""

from __future__ import annotations

import json
import logging
import os
import posixpath
import tempfile
import time
import uuid
from pathlib import Path
from typing import Callable, Protocol

from gitnote_sync.sync.fingerprint import fingerprint as compute_fingerprint
from gitnote_sync.sync.models import (
    DeleteTombstone,
    FileKind,
    RenameTombstone,
    RepoFile,
    Tombstone,
    mime_for_path,
)

logger = logging.getLogger(__name__)

STORE_VERSION = 1


def _now_ms() -> int:
    return int(time.time() * 1000)


def _parse_tombstone(raw: dict) -> Tombstone:
    if raw.get("type") == "rename":
        return RenameTombstone.model_validate(raw)
    return DeleteTombstone.model_validate(raw)


def _normalize_dir(path: str) -> str:
    return path.strip().strip("/")


def _in_dir(path: str, directory: str) -> bool:
    return directory == "" or path.startswith(directory + "/")


class LocalStore(Protocol):
    """Operations the sync engine needs from a local document store."""

    def create_file(
        self,
        path: str,
        content: str,
        kind: FileKind = FileKind.MARKDOWN,
        mime: str | None = None,
    ) -> str: ...

    def load_file_by_id(self, file_id: str) -> RepoFile | None: ...

    def list_files(self) -> list[RepoFile]: ...

    def update_file(
        self,
        file_id: str,
        content: str,
        mime: str | None = None,
        kind: FileKind | None = None,
    ) -> None: ...

    def delete_file_by_id(self, file_id: str) -> None: ...

    def move_file_path(self, file_id: str, new_path: str) -> None: ...

    def mark_synced(
        self,
        file_id: str,
        remote_id: str | None = None,
        synced_fingerprint: str | None = None,
    ) -> None: ...

    def find_file_by_path(self, path: str) -> RepoFile | None: ...

    def find_by_remote_id(self, remote_id: str) -> list[RepoFile]: ...

    def find_by_fingerprint(self, fp: str) -> list[RepoFile]: ...

    def list_tombstones(self) -> list[Tombstone]: ...

    def remove_tombstones(self, predicate: Callable[[Tombstone], bool]) -> None: ...

    def fingerprint(
        self, kind: FileKind | str, content: str, remote_id: str | None = None
    ) -> str: ...


class JsonLocalStore:
    """``LocalStore`` backed by a single JSON file.

    Args:
        path: Location of the store document.  Created on first write.
    """

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._files: dict[str, RepoFile] = {}
        self._tombstones: list[Tombstone] = []
        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self._path.exists():
            return
        with open(self._path, encoding="utf-8") as fh:
            data = json.load(fh)
        version = data.get("version", STORE_VERSION)
        if version != STORE_VERSION:
            raise ValueError(
                f"Unsupported store version {version} in {self._path}"
            )
        for raw in data.get("files", []):
            repo_file = RepoFile.model_validate(raw)
            self._files[repo_file.id] = repo_file
        self._tombstones = [_parse_tombstone(t) for t in data.get("tombstones", [])]
        logger.debug(
            "Loaded %d file(s) and %d tombstone(s) from %s",
            len(self._files),
            len(self._tombstones),
            self._path,
        )

    def _save(self) -> None:
        """Persist the store atomically."""
        directory = self._path.parent
        directory.mkdir(parents=True, exist_ok=True)
        document = {
            "version": STORE_VERSION,
            "files": [
                f.model_dump(mode="json")
                for f in sorted(self._files.values(), key=lambda f: f.path)
            ],
            "tombstones": [t.model_dump(mode="json") for t in self._tombstones],
        }
        fd, tmp_path = tempfile.mkstemp(dir=str(directory), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(document, fh, indent=2)
            os.replace(tmp_path, self._path)
        except BaseException:
            # Clean up temp file on any failure.
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    # ------------------------------------------------------------------
    # File CRUD
    # ------------------------------------------------------------------

    def create_file(
        self,
        path: str,
        content: str,
        kind: FileKind = FileKind.MARKDOWN,
        mime: str | None = None,
    ) -> str:
        """Create a file and return its id.

        Raises:
            ValueError: If a file already exists at *path*.
        """
        if self.find_file_by_path(path) is not None:
            raise ValueError(f"A file already exists at {path}")
        file_id = uuid.uuid4().hex
        self._files[file_id] = RepoFile(
            id=file_id,
            path=path,
            kind=FileKind(kind),
            content=content,
            mime=mime or mime_for_path(path),
            updated_at=_now_ms(),
        )
        self._tombstones = [
            t
            for t in self._tombstones
            if not (isinstance(t, DeleteTombstone) and t.path == path)
        ]
        self._save()
        logger.debug("Created %s (%s)", path, file_id)
        return file_id

    def load_file_by_id(self, file_id: str) -> RepoFile | None:
        repo_file = self._files.get(file_id)
        return repo_file.model_copy() if repo_file else None

    def list_files(self) -> list[RepoFile]:
        """Return copies of all files, sorted by path."""
        return [
            f.model_copy() for f in sorted(self._files.values(), key=lambda f: f.path)
        ]

    def update_file(
        self,
        file_id: str,
        content: str,
        mime: str | None = None,
        kind: FileKind | None = None,
    ) -> None:
        """Replace the content of a file.  Unknown ids are ignored."""
        repo_file = self._files.get(file_id)
        if repo_file is None:
            return
        repo_file.content = content
        if mime is not None:
            repo_file.mime = mime
        if kind is not None:
            repo_file.kind = FileKind(kind)
        repo_file.updated_at = _now_ms()
        self._save()

    def delete_file_by_id(self, file_id: str) -> None:
        """Delete a file and queue a delete tombstone for its path."""
        repo_file = self._files.pop(file_id, None)
        if repo_file is None:
            return
        self._tombstones.append(
            DeleteTombstone(
                path=repo_file.path,
                deleted_at=_now_ms(),
                last_remote_id=repo_file.last_remote_id,
            )
        )
        self._save()
        logger.debug("Deleted %s; tombstone queued", repo_file.path)

    def rename_file_by_id(self, file_id: str, new_path: str) -> None:
        """Rename a file and queue a rename tombstone.

        The file forgets its sync markers so the next pass pushes it under
        *new_path*.

        Raises:
            ValueError: If another file already exists at *new_path*.
        """
        repo_file = self._files.get(file_id)
        if repo_file is None or repo_file.path == new_path:
            return
        occupant = self.find_file_by_path(new_path)
        if occupant is not None:
            raise ValueError(f"A file already exists at {new_path}")
        now = _now_ms()
        self._tombstones.append(
            RenameTombstone(
                from_path=repo_file.path,
                to_path=new_path,
                renamed_at=now,
                last_remote_id=repo_file.last_remote_id,
            )
        )
        repo_file.path = new_path
        repo_file.last_remote_id = None
        repo_file.last_synced_fingerprint = None
        repo_file.updated_at = now
        self._save()

    def move_file_path(self, file_id: str, new_path: str) -> None:
        """Move a file without recording a tombstone (used by sync)."""
        repo_file = self._files.get(file_id)
        if repo_file is None:
            return
        repo_file.path = new_path
        repo_file.updated_at = _now_ms()
        self._save()

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def list_folders(self) -> list[str]:
        """Return every directory that contains a file, ancestors included."""
        folders: set[str] = set()
        for repo_file in self._files.values():
            directory = posixpath.dirname(repo_file.path)
            while directory:
                folders.add(directory)
                directory = posixpath.dirname(directory)
        return sorted(folders)

    def rename_folder(self, old_dir: str, new_dir: str) -> None:
        """Rename every file under *old_dir*, one rename tombstone each."""
        source = _normalize_dir(old_dir)
        target = _normalize_dir(new_dir)
        if not source or source == target:
            return
        for repo_file in self.list_files():
            if _in_dir(repo_file.path, source):
                rest = repo_file.path[len(source) :]
                self.rename_file_by_id(repo_file.id, target + rest if target else rest.lstrip("/"))

    def delete_folder(self, directory: str) -> None:
        """Delete every file under *directory*, one delete tombstone each."""
        target = _normalize_dir(directory)
        if not target:
            return
        for repo_file in self.list_files():
            if _in_dir(repo_file.path, target):
                self.delete_file_by_id(repo_file.id)

    # ------------------------------------------------------------------
    # Sync markers and lookups
    # ------------------------------------------------------------------

    def mark_synced(
        self,
        file_id: str,
        remote_id: str | None = None,
        synced_fingerprint: str | None = None,
    ) -> None:
        """Record the remote state a file is based on.

        Only the markers that are passed are updated.
        """
        repo_file = self._files.get(file_id)
        if repo_file is None:
            return
        if remote_id is not None:
            repo_file.last_remote_id = remote_id
        if synced_fingerprint is not None:
            repo_file.last_synced_fingerprint = synced_fingerprint
        self._save()

    def find_file_by_path(self, path: str) -> RepoFile | None:
        for repo_file in self._files.values():
            if repo_file.path == path:
                return repo_file.model_copy()
        return None

    def find_by_remote_id(self, remote_id: str) -> list[RepoFile]:
        """Return files last synced against *remote_id*, sorted by path."""
        return [f for f in self.list_files() if f.last_remote_id == remote_id]

    def find_by_fingerprint(self, fp: str) -> list[RepoFile]:
        """Return files whose current content has fingerprint *fp*."""
        return [
            f for f in self.list_files() if self.fingerprint(f.kind, f.content) == fp
        ]

    # ------------------------------------------------------------------
    # Tombstones
    # ------------------------------------------------------------------

    def list_tombstones(self) -> list[Tombstone]:
        """Return pending tombstones, oldest first."""
        return list(self._tombstones)

    def remove_tombstones(self, predicate: Callable[[Tombstone], bool]) -> None:
        """Drop every tombstone matching *predicate*."""
        remaining = [t for t in self._tombstones if not predicate(t)]
        if len(remaining) == len(self._tombstones):
            return
        self._tombstones = remaining
        self._save()

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    @staticmethod
    def fingerprint(
        kind: FileKind | str, content: str, remote_id: str | None = None
    ) -> str:
        return compute_fingerprint(kind, content, remote_id)
