"""Core sync engine that reconciles a local store with a remote branch.

The ``SyncEngine`` ties together the tree reader, file puller, merger and
commit builder into one pass.  It:

1. Lists tracked files at the branch head.
2. Walks every remote entry: adopts moved files, pulls new ones, pushes
   local edits, and merges files changed on both sides.
3. Walks local files missing remotely: pushes new or edited ones and
   mirrors upstream deletions for clean ones.
4. Replays pending delete and rename tombstones.
5. Publishes every remote mutation of the pass as ONE commit.
6. Marks pushed files synced and clears resolved tombstones only after
   the commit landed.

Errors while reading a single file (undecodable content, unresolvable
binary data) skip that file for the pass.  Transport errors and ref
conflicts abort the pass before anything is committed; a
``RefConflictError`` leaves sync markers and tombstones untouched so the
next pass replays the same work.
"""

from __future__ import annotations

import asyncio
import binascii
import logging
from dataclasses import dataclass, field

from gitnote_sync.config import Config
from gitnote_sync.core.async_utils import run_sync
from gitnote_sync.core.cache import BlobCache
from gitnote_sync.core.client import GitHubClient
from gitnote_sync.core.errors import (
    ContentDecodeError,
    MissingContentError,
    RefConflictError,
)
from gitnote_sync.sync.commit import CommitBuilder
from gitnote_sync.sync.fingerprint import decode_base64
from gitnote_sync.sync.merger import generate_diff, merge_markdown, merge_union
from gitnote_sync.sync.models import (
    DeleteTombstone,
    FileChange,
    FileKind,
    PulledFile,
    RemoteEntry,
    RenameTombstone,
    RepoFile,
    SyncSummary,
    Tombstone,
)
from gitnote_sync.sync.remote import RemoteFilePuller, RemoteTreeReader
from gitnote_sync.sync.store import LocalStore

logger = logging.getLogger(__name__)

COMMIT_AUTHOR_TAG = "gitnote-sync"


@dataclass
class _PassState:
    """Mutable bookkeeping for one sync pass."""

    remote: dict[str, RemoteEntry]
    counts: dict[str, int] = field(
        default_factory=lambda: dict.fromkeys(
            (
                "pulled",
                "pushed",
                "merged",
                "deleted_remote",
                "deleted_local",
                "skipped",
            ),
            0,
        )
    )
    changes: dict[str, FileChange] = field(default_factory=dict)
    # path -> (file id, fingerprint of the pushed content)
    pushes: dict[str, tuple[str, str]] = field(default_factory=dict)
    # tombstones cleared once the commit lands
    after_commit: list[Tombstone] = field(default_factory=list)


class SyncEngine:
    """Run bidirectional sync passes for one store and one branch.

    Args:
        store: The local document store.
        client: GitHubClient for the repository.
        config: Branch and lazy-binary settings.
        blob_cache: Cache shared with other engines of the same session.
            A private cache is created when omitted.
    """

    def __init__(
        self,
        store: LocalStore,
        client: GitHubClient,
        config: Config,
        blob_cache: BlobCache | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.config = config
        self.blob_cache = blob_cache or BlobCache(ttl_seconds=config.blob_cache_ttl)

        self.reader = RemoteTreeReader(client)
        self.puller = RemoteFilePuller(
            client,
            self.blob_cache,
            ref=config.branch,
            lazy_binary=config.lazy_binary,
        )
        self.committer = CommitBuilder(client)
        self._in_flight = asyncio.Lock()

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def sync_bidirectional(self) -> SyncSummary:
        """Execute one full sync pass.

        Returns:
            Counts of what changed on either side.

        Raises:
            RuntimeError: If a pass is already running on this engine.
            RefConflictError: If the branch moved while committing; re-run
                the pass.
            TransportError: On any other remote failure.
        """
        if self._in_flight.locked():
            raise RuntimeError("A sync pass is already in progress")
        async with self._in_flight:
            return await self._run_pass()

    async def _run_pass(self) -> SyncSummary:
        branch = self.config.branch
        entries = await run_sync(self.reader.list_entries, branch)
        state = _PassState(remote={e.path: e for e in entries})
        logger.info(
            "Syncing %s/%s@%s: %d remote file(s)",
            self.client.owner,
            self.client.repo,
            branch,
            len(entries),
        )

        tombstones = self.store.list_tombstones()
        blocked_paths = {
            t.path if isinstance(t, DeleteTombstone) else t.from_path
            for t in tombstones
        }
        rename_targets = {
            t.to_path for t in tombstones if isinstance(t, RenameTombstone)
        }

        # Step 1: remote entries
        for entry in entries:
            await self._guarded(
                entry.path,
                state,
                self._sync_remote_entry(entry, state, blocked_paths, rename_targets),
            )

        # Step 2: local files missing remotely
        for repo_file in self.store.list_files():
            if repo_file.path in state.remote:
                continue
            await self._guarded(
                repo_file.path, state, self._sync_local_only(repo_file, state)
            )

        # Step 3: tombstones
        for tombstone in tombstones:
            path = (
                tombstone.path
                if isinstance(tombstone, DeleteTombstone)
                else tombstone.from_path
            )
            await self._guarded(path, state, self._replay_tombstone(tombstone, state))

        # Step 4: one commit for everything
        if state.changes:
            await self._commit(state)

        summary = SyncSummary(**state.counts)
        logger.info("Sync complete: %s", summary.summary())
        return summary

    async def _guarded(self, path: str, state: _PassState, step) -> None:
        """Await *step*, skipping the file on a per-file error."""
        try:
            await step
        except (ContentDecodeError, MissingContentError) as exc:
            logger.warning("Skipping %s: %s", path, exc)
            state.counts["skipped"] += 1

    # ------------------------------------------------------------------
    # Step 1: remote entries
    # ------------------------------------------------------------------

    async def _sync_remote_entry(
        self,
        entry: RemoteEntry,
        state: _PassState,
        blocked_paths: set[str],
        rename_targets: set[str],
    ) -> None:
        local = self.store.find_file_by_path(entry.path)
        if local is None:
            if entry.path in blocked_paths:
                logger.debug("%s: tombstone pending, deferring", entry.path)
                return
            await self._adopt_remote(entry, state, rename_targets)
            return

        local_fp = self.store.fingerprint(local.kind, local.content)
        locally_changed = local_fp != local.last_synced_fingerprint

        if entry.content_id == local.last_remote_id:
            if locally_changed:
                logger.debug("%s: local edit only", entry.path)
                await self._queue_push(local, state)
            return

        pulled = await run_sync(self.puller.pull, entry.path, entry.content_id)
        if pulled is None:
            logger.debug("%s: vanished while pulling", entry.path)
            return
        remote_fp = self._fingerprint_pulled(pulled)

        if remote_fp == local_fp:
            logger.debug("%s: same content on both sides", entry.path)
            self.store.mark_synced(local.id, entry.content_id, local_fp)
            return

        if not locally_changed:
            logger.info("Pulled %s", entry.path)
            self.store.update_file(local.id, pulled.content, kind=pulled.kind)
            self.store.mark_synced(local.id, entry.content_id, remote_fp)
            state.counts["pulled"] += 1
            return

        if remote_fp == local.last_synced_fingerprint:
            # Remote content is still our base: only its identity moved.
            logger.debug("%s: remote id changed, content did not", entry.path)
            self.store.mark_synced(local.id, remote_id=entry.content_id)
            local.last_remote_id = entry.content_id
            await self._queue_push(local, state)
            return

        if local.kind is FileKind.MARKDOWN and pulled.kind is FileKind.MARKDOWN:
            await self._merge(local, entry, pulled, remote_fp, state)
            return

        logger.warning(
            "%s changed on both sides and cannot be merged; keeping local copy",
            entry.path,
        )
        self.store.mark_synced(local.id, remote_id=entry.content_id)
        await self._queue_push(local, state)

    async def _adopt_remote(
        self, entry: RemoteEntry, state: _PassState, rename_targets: set[str]
    ) -> None:
        """Bring a remote path that has no local file into the store.

        A local file with matching content is only moved onto the remote
        path when it is itself the target of a pending local rename.
        """
        for candidate in self.store.find_by_remote_id(entry.content_id):
            if candidate.path in state.remote:
                continue
            logger.info("Moved %s -> %s (renamed remotely)", candidate.path, entry.path)
            self.store.move_file_path(candidate.id, entry.path)
            state.counts["pulled"] += 1
            candidate_fp = self.store.fingerprint(candidate.kind, candidate.content)
            if candidate_fp != candidate.last_synced_fingerprint:
                candidate.path = entry.path
                await self._queue_push(candidate, state)
            return

        pulled = await run_sync(self.puller.pull, entry.path, entry.content_id)
        if pulled is None:
            logger.debug("%s: vanished while pulling", entry.path)
            return
        remote_fp = self._fingerprint_pulled(pulled)

        for candidate in self.store.find_by_fingerprint(remote_fp):
            if candidate.path in state.remote or candidate.path not in rename_targets:
                continue
            logger.info(
                "Moved %s -> %s (same content renamed on both sides)",
                candidate.path,
                entry.path,
            )
            self.store.move_file_path(candidate.id, entry.path)
            self.store.mark_synced(candidate.id, entry.content_id, remote_fp)
            state.counts["pulled"] += 1
            return

        logger.info("Pulled new file %s", entry.path)
        file_id = self.store.create_file(entry.path, pulled.content, pulled.kind)
        self.store.mark_synced(file_id, entry.content_id, remote_fp)
        state.counts["pulled"] += 1

    async def _merge(
        self,
        local: RepoFile,
        entry: RemoteEntry,
        pulled: PulledFile,
        remote_fp: str,
        state: _PassState,
    ) -> None:
        base = None
        if local.last_remote_id:
            base = await run_sync(
                self.puller.fetch_text, local.last_remote_id, local.path
            )
        if base is None:
            logger.debug("%s: no merge base, using union", local.path)
            merged = merge_union(local.content, pulled.content)
        else:
            merged = merge_markdown(base, local.content, pulled.content)

        logger.info("Merged %s", local.path)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "%s",
                generate_diff(pulled.content, merged, "remote", "merged"),
            )

        # The pulled text becomes the new base; the merge result is a local edit.
        self.store.update_file(local.id, merged)
        self.store.mark_synced(local.id, entry.content_id, remote_fp)
        state.counts["merged"] += 1

        merged_fp = self.store.fingerprint(FileKind.MARKDOWN, merged)
        if merged_fp != remote_fp:
            local.content = merged
            local.last_remote_id = entry.content_id
            await self._queue_push(local, state, count=False)

    # ------------------------------------------------------------------
    # Step 2: local files missing remotely
    # ------------------------------------------------------------------

    async def _sync_local_only(self, repo_file: RepoFile, state: _PassState) -> None:
        if repo_file.last_remote_id is None:
            logger.debug("%s: new local file", repo_file.path)
            await self._queue_push(repo_file, state)
            return

        local_fp = self.store.fingerprint(repo_file.kind, repo_file.content)
        if local_fp != repo_file.last_synced_fingerprint:
            logger.info("Restoring %s (deleted remotely, edited locally)", repo_file.path)
            await self._queue_push(repo_file, state)
            return

        logger.info("Deleted %s locally (deleted remotely)", repo_file.path)
        self._delete_local(repo_file)
        state.counts["deleted_local"] += 1

    def _delete_local(self, repo_file: RepoFile) -> None:
        """Drop a file that is gone upstream, without queueing a tombstone."""
        self.store.delete_file_by_id(repo_file.id)
        self.store.remove_tombstones(
            lambda t: isinstance(t, DeleteTombstone) and t.path == repo_file.path
        )

    # ------------------------------------------------------------------
    # Step 3: tombstones
    # ------------------------------------------------------------------

    async def _replay_tombstone(self, tombstone: Tombstone, state: _PassState) -> None:
        if isinstance(tombstone, RenameTombstone):
            path = tombstone.from_path
        else:
            path = tombstone.path

        entry = state.remote.get(path)
        if entry is None:
            logger.debug("%s: already absent remotely, tombstone resolved", path)
            self._clear_tombstone(tombstone)
            return

        change = state.changes.get(path)
        if change is not None:
            if change.delete:
                # A second tombstone for a path already being deleted.
                state.after_commit.append(tombstone)
            else:
                # A live file took the path over; it is pushed instead.
                self._clear_tombstone(tombstone)
            return

        if self.store.find_file_by_path(path) is not None:
            logger.debug("%s: live file at path, tombstone dropped", path)
            self._clear_tombstone(tombstone)
            return

        if isinstance(tombstone, RenameTombstone) and self._rename_target_pending(
            tombstone, state
        ):
            logger.warning(
                "%s was not pushed; keeping %s remotely until it is",
                tombstone.to_path,
                path,
            )
            return

        if entry.content_id == tombstone.last_remote_id:
            logger.info("Deleting %s remotely", path)
            state.changes[path] = FileChange(path=path, delete=True)
            state.counts["deleted_remote"] += 1
            state.after_commit.append(tombstone)
            return

        # Remote changed since the local delete or rename: remote wins.
        logger.info("%s changed remotely since it was removed locally; keeping it", path)
        pulled = await run_sync(self.puller.pull, path, entry.content_id)
        self._clear_tombstone(tombstone)
        if pulled is None:
            return
        file_id = self.store.create_file(path, pulled.content, pulled.kind)
        self.store.mark_synced(file_id, entry.content_id, self._fingerprint_pulled(pulled))
        state.counts["pulled"] += 1

    def _rename_target_pending(
        self, tombstone: RenameTombstone, state: _PassState
    ) -> bool:
        """True when the renamed file exists locally but is not on its way up."""
        target = tombstone.to_path
        if target in state.remote or target in state.changes:
            return False
        return self.store.find_file_by_path(target) is not None

    def _clear_tombstone(self, tombstone: Tombstone) -> None:
        self.store.remove_tombstones(lambda t: t == tombstone)

    # ------------------------------------------------------------------
    # Step 4: commit
    # ------------------------------------------------------------------

    async def _queue_push(
        self, repo_file: RepoFile, state: _PassState, count: bool = True
    ) -> None:
        data = await self._content_bytes(repo_file)
        state.changes[repo_file.path] = FileChange(path=repo_file.path, content=data)
        state.pushes[repo_file.path] = (
            repo_file.id,
            self.store.fingerprint(repo_file.kind, repo_file.content),
        )
        if count:
            state.counts["pushed"] += 1
        logger.info("Pushing %s", repo_file.path)

    async def _content_bytes(self, repo_file: RepoFile) -> bytes:
        if repo_file.kind is FileKind.MARKDOWN:
            return repo_file.content.encode("utf-8")
        if repo_file.kind is FileKind.ASSET_REFERENCE:
            return await run_sync(
                self.puller.resolve_reference, repo_file.content, repo_file.path
            )
        try:
            return decode_base64(repo_file.content)
        except (binascii.Error, ValueError) as exc:
            raise ContentDecodeError(repo_file.path, "invalid base64") from exc

    async def _commit(self, state: _PassState) -> None:
        changes = [state.changes[path] for path in sorted(state.changes)]
        message = self._commit_message(changes)
        try:
            result = await run_sync(
                self.committer.commit, self.config.branch, changes, message
            )
        except RefConflictError:
            logger.warning(
                "Branch %s moved during sync; nothing was committed, re-run sync",
                self.config.branch,
            )
            raise

        for path, (file_id, fp) in state.pushes.items():
            self.store.mark_synced(file_id, result.remote_ids.get(path), fp)
        for tombstone in state.after_commit:
            self._clear_tombstone(tombstone)

    @staticmethod
    def _commit_message(changes: list[FileChange]) -> str:
        lines = [f"Sync {len(changes)} file(s) from {COMMIT_AUTHOR_TAG}", ""]
        for change in changes:
            prefix = "D" if change.delete else "M"
            lines.append(f"{prefix} {change.path}")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fingerprint_pulled(self, pulled: PulledFile) -> str:
        remote_id = pulled.content_id if pulled.kind is FileKind.BINARY else None
        return self.store.fingerprint(pulled.kind, pulled.content, remote_id)


async def sync_bidirectional(
    store: LocalStore,
    client: GitHubClient,
    config: Config,
    blob_cache: BlobCache | None = None,
) -> SyncSummary:
    """Run one sync pass of *store* against the configured branch."""
    engine = SyncEngine(store, client, config, blob_cache)
    return await engine.sync_bidirectional()
