"""Offline-first bidirectional sync between a local store and a GitHub branch.

Architecture
------------
Every pass rebuilds the remote listing from the branch head and compares
each file against the remote content id it was last synced with
(``last_remote_id``) and the fingerprint of its content at that time
(``last_synced_fingerprint``).  Deferred local deletes and renames live in
a tombstone queue and are replayed after the file walk.  All remote writes
of a pass land in one commit guarded by a fast-forward ref update.

Modules:

- ``engine``      -- ``SyncEngine``: orchestrates one pass.
- ``remote``      -- ``RemoteTreeReader`` and ``RemoteFilePuller``.
- ``commit``      -- ``CommitBuilder``: atomic multi-file commits.
- ``merger``      -- Three-way Markdown merge via ``diff-match-patch``.
- ``fingerprint`` -- Git blob shas of normalised content.
- ``store``       -- ``LocalStore`` contract and ``JsonLocalStore``.
- ``models``      -- Data contracts.
- ``reporter``    -- Human-readable and JSON summaries.

Usage example
-------------
::

    from gitnote_sync.config import load_config
    from gitnote_sync.core.client import GitHubClient
    from gitnote_sync.sync import JsonLocalStore, SyncEngine, format_sync_summary

    config = load_config(owner="octocat", repo="notes")
    engine = SyncEngine(JsonLocalStore(config.store_path), GitHubClient(config), config)

    summary = await engine.sync_bidirectional()
    print(format_sync_summary(summary))
"""

from .engine import SyncEngine, sync_bidirectional
from .merger import merge_markdown
from .models import (
    DeleteTombstone,
    FileChange,
    FileKind,
    PulledFile,
    RemoteEntry,
    RenameTombstone,
    RepoFile,
    SyncSummary,
)
from .reporter import format_sync_summary, summary_to_json
from .store import JsonLocalStore, LocalStore

__all__ = [
    "DeleteTombstone",
    "FileChange",
    "FileKind",
    "JsonLocalStore",
    "LocalStore",
    "PulledFile",
    "RemoteEntry",
    "RenameTombstone",
    "RepoFile",
    "SyncEngine",
    "SyncSummary",
    "format_sync_summary",
    "merge_markdown",
    "summary_to_json",
    "sync_bidirectional",
]
