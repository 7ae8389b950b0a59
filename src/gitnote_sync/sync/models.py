"""Pydantic models for the bidirectional sync engine.

Defines the data contracts shared by the sync modules:

- ``FileKind``: How a tracked file's content is represented.
- ``RepoFile``: A file in the local store, with its sync markers.
- ``RemoteEntry``: One tracked file in the remote tree listing.
- ``DeleteTombstone`` / ``RenameTombstone``: Deferred local deletes and
  renames awaiting reconciliation.
- ``PulledFile``: Content fetched for one remote path.
- ``FileChange``: One path in a commit batch.
- ``CommitResult``: Outcome of an atomic multi-file commit.
- ``SyncSummary``: Counts reported by one sync pass.

Value models are frozen (immutable).
"""

from __future__ import annotations

import posixpath
from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel


class FileKind(str, Enum):
    """Representation of a tracked file's content."""

    MARKDOWN = "markdown"
    BINARY = "binary"
    ASSET_REFERENCE = "asset-reference"


MARKDOWN_EXTENSIONS = frozenset({".md", ".markdown"})

BINARY_MIME_TYPES: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    ".ico": "image/x-icon",
    ".pdf": "application/pdf",
    ".mp3": "audio/mpeg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
}


def classify_path(path: str) -> FileKind | None:
    """Return the kind a remote path is tracked as, or ``None`` if ignored."""
    ext = posixpath.splitext(path)[1].lower()
    if ext in MARKDOWN_EXTENSIONS:
        return FileKind.MARKDOWN
    if ext in BINARY_MIME_TYPES:
        return FileKind.BINARY
    return None


def mime_for_path(path: str) -> str:
    """Guess the MIME type of a tracked path."""
    ext = posixpath.splitext(path)[1].lower()
    if ext in MARKDOWN_EXTENSIONS:
        return "text/markdown"
    return BINARY_MIME_TYPES.get(ext, "application/octet-stream")


class RepoFile(BaseModel):
    """A file held by the local store.

    Attributes:
        id: Stable local identifier (survives renames).
        path: Repository-relative path.
        kind: Content representation.
        content: Markdown text, base64 bytes, or a referenced blob sha.
        mime: MIME type.
        last_remote_id: Remote content id this file was last synced against.
        last_synced_fingerprint: Fingerprint of ``content`` at last sync.
        updated_at: Epoch milliseconds of the last local modification.
    """

    id: str
    path: str
    kind: FileKind = FileKind.MARKDOWN
    content: str = ""
    mime: str = "text/markdown"
    last_remote_id: str | None = None
    last_synced_fingerprint: str | None = None
    updated_at: int = 0


class RemoteEntry(BaseModel):
    """One tracked file in the remote tree at a branch head."""

    path: str
    content_id: str
    kind: FileKind

    model_config = {"frozen": True}


class DeleteTombstone(BaseModel):
    """A local delete not yet applied to the remote."""

    type: Literal["delete"] = "delete"
    path: str
    deleted_at: int
    last_remote_id: str | None = None

    model_config = {"frozen": True}


class RenameTombstone(BaseModel):
    """A local rename not yet applied to the remote."""

    type: Literal["rename"] = "rename"
    from_path: str
    to_path: str
    renamed_at: int
    last_remote_id: str | None = None

    model_config = {"frozen": True}


Tombstone = Union[DeleteTombstone, RenameTombstone]


class PulledFile(BaseModel):
    """Content fetched for one remote path.

    For binary files pulled lazily, ``kind`` is ``ASSET_REFERENCE`` and
    ``content`` is the blob sha to download on demand.
    """

    path: str
    content: str
    content_id: str
    kind: FileKind

    model_config = {"frozen": True}


class FileChange(BaseModel):
    """One entry of a commit batch: new bytes for *path*, or a deletion."""

    path: str
    content: bytes | None = None
    delete: bool = False

    model_config = {"frozen": True}


class CommitResult(BaseModel):
    """Outcome of an atomic commit.

    Attributes:
        commit_sha: The new branch head.
        remote_ids: Blob sha per written path; ``None`` for deleted paths.
    """

    commit_sha: str
    remote_ids: dict[str, str | None] = {}

    model_config = {"frozen": True}


class SyncSummary(BaseModel):
    """Counts for one sync pass.

    ``skipped`` counts files left untouched because of a per-file error
    (undecodable content, unresolvable binary data).
    """

    pulled: int = 0
    pushed: int = 0
    merged: int = 0
    deleted_remote: int = 0
    deleted_local: int = 0
    skipped: int = 0

    model_config = {"frozen": True}

    @property
    def total(self) -> int:
        """Number of files that changed on either side."""
        return (
            self.pulled
            + self.pushed
            + self.merged
            + self.deleted_remote
            + self.deleted_local
        )

    @property
    def is_empty(self) -> bool:
        """``True`` when the pass changed nothing on either side."""
        return self.total == 0

    def summary(self) -> str:
        """Format a one-line summary of the pass."""
        if self.is_empty:
            return "Everything up to date"
        parts = []
        for label, count in (
            ("pulled", self.pulled),
            ("pushed", self.pushed),
            ("merged", self.merged),
            ("deleted remotely", self.deleted_remote),
            ("deleted locally", self.deleted_local),
        ):
            if count:
                parts.append(f"{count} {label}")
        return ", ".join(parts)
