"""Atomic multi-file commits built from git-data primitives.

The remote API has no "commit these files" call, so a commit is assembled
from blobs, a tree layered on the head's tree, and a commit object, and
then published by a fast-forward-only ref update.  If the branch moved
after its head was read the ref update is rejected and nothing becomes
visible: dangling blobs, trees and commits are garbage to the remote.
"""

from __future__ import annotations

import logging

from gitnote_sync.core.client import GitHubClient
from gitnote_sync.sync.models import CommitResult, FileChange

logger = logging.getLogger(__name__)

_FILE_MODE = "100644"


class CommitBuilder:
    """Publish a batch of file changes as one commit.

    Args:
        client: Transport for the repository.
    """

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    def commit(
        self, ref: str, changes: list[FileChange], message: str
    ) -> CommitResult:
        """Commit *changes* on top of the current head of *ref*.

        Args:
            ref: Branch name.  Created if it does not exist yet.
            changes: Files to write or delete.  A path appears at most once.
            message: Commit message.

        Returns:
            The new head and the blob sha of every written path
            (``None`` for deletions).

        Raises:
            ValueError: If *changes* is empty or names a path twice.
            RefConflictError: If the branch moved since its head was read.
            TransportError: On any other remote failure.
        """
        if not changes:
            raise ValueError("Cannot build a commit without changes")
        paths = [change.path for change in changes]
        if len(set(paths)) != len(paths):
            raise ValueError("A commit batch may name each path only once")

        head = self._client.get_ref(ref)
        base_tree: str | None = None
        parents: list[str] = []
        if head is not None:
            base_tree = self._client.get_commit(head)["tree"]["sha"]
            parents = [head]

        entries = []
        remote_ids: dict[str, str | None] = {}
        for change in changes:
            if change.delete:
                remote_ids[change.path] = None
                if base_tree is None:
                    # Nothing to delete on a branch that does not exist.
                    continue
                sha = None
            else:
                sha = self._client.create_blob(change.content or b"")
                remote_ids[change.path] = sha
            entries.append(
                {"path": change.path, "mode": _FILE_MODE, "type": "blob", "sha": sha}
            )

        tree = self._client.create_tree(base_tree, entries)
        commit_sha = self._client.create_commit(message, tree, parents)

        if head is None:
            self._client.create_ref(ref, commit_sha)
        else:
            self._client.update_ref(ref, commit_sha)

        logger.info(
            "Committed %d change(s) to %s as %s", len(changes), ref, commit_sha[:7]
        )
        return CommitResult(commit_sha=commit_sha, remote_ids=remote_ids)
