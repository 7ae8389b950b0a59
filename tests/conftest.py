"""Shared pytest fixtures for gitnote-sync tests."""

from __future__ import annotations

import base64
import hashlib
import json
import os
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from gitnote_sync.config import Config
from gitnote_sync.core.cache import BlobCache
from gitnote_sync.core.errors import RefConflictError, TransportError
from gitnote_sync.sync.engine import SyncEngine
from gitnote_sync.sync.fingerprint import git_blob_sha
from gitnote_sync.sync.store import JsonLocalStore


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep developer GITNOTE_* / GITHUB_TOKEN settings out of the tests."""
    for key in list(os.environ):
        if key.startswith("GITNOTE_") or key in ("GITHUB_TOKEN", "LOG_LEVEL"):
            monkeypatch.delenv(key, raising=False)


class FakeGitHubClient:
    """In-memory GitHub git-data API for one repository.

    Objects are content-addressed: blob shas are real Git blob ids, so a
    fingerprint computed locally matches the sha the fake reports.  Ref
    updates are fast-forward checked, and ``before_update_ref`` lets a
    test move the branch between a commit's head read and its ref update.
    """

    def __init__(self, owner: str = "octocat", repo: str = "notes") -> None:
        self.owner = owner
        self.repo = repo
        self.blobs: dict[str, bytes] = {}
        self.trees: dict[str, dict[str, str]] = {}
        self.commits: dict[str, dict[str, Any]] = {}
        self.refs: dict[str, str] = {}
        self.corrupt_blobs: set[str] = set()
        self.before_update_ref: Optional[Callable[[], None]] = None
        self.calls: list[str] = []

    # -- reads --------------------------------------------------------

    def get_ref(self, branch: str) -> str | None:
        self.calls.append("get_ref")
        return self.refs.get(branch)

    def get_commit(self, sha: str) -> dict[str, Any]:
        self.calls.append("get_commit")
        commit = self.commits[sha]
        return {"sha": sha, "tree": {"sha": commit["tree"]}, "parents": commit["parents"]}

    def get_tree(self, sha: str, recursive: bool = True) -> dict[str, Any]:
        self.calls.append("get_tree")
        entries = [
            {"path": path, "mode": "100644", "type": "blob", "sha": blob}
            for path, blob in sorted(self.trees[sha].items())
        ]
        return {"sha": sha, "tree": entries, "truncated": False}

    def get_blob(self, sha: str) -> str | None:
        self.calls.append("get_blob")
        if sha in self.corrupt_blobs:
            return "!!! not base64 !!!"
        if sha not in self.blobs:
            return None
        return base64.b64encode(self.blobs[sha]).decode("ascii")

    def get_contents(self, path: str, ref: str) -> dict[str, Any] | None:
        self.calls.append("get_contents")
        head = self.refs.get(ref)
        if head is None:
            return None
        blob = self.trees[self.commits[head]["tree"]].get(path)
        if blob is None:
            return None
        return {
            "sha": blob,
            "encoding": "base64",
            "content": base64.b64encode(self.blobs[blob]).decode("ascii"),
        }

    # -- writes -------------------------------------------------------

    def create_blob(self, data: bytes) -> str:
        self.calls.append("create_blob")
        sha = git_blob_sha(data)
        self.blobs[sha] = data
        return sha

    def create_tree(self, base_tree: str | None, entries: list[dict[str, Any]]) -> str:
        self.calls.append("create_tree")
        files = dict(self.trees[base_tree]) if base_tree else {}
        for entry in entries:
            if entry["sha"] is None:
                if entry["path"] not in files:
                    raise TransportError(422, "/git/trees", "path not in base tree")
                del files[entry["path"]]
            else:
                files[entry["path"]] = entry["sha"]
        sha = hashlib.sha1(json.dumps(files, sort_keys=True).encode()).hexdigest()
        self.trees[sha] = files
        return sha

    def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        self.calls.append("create_commit")
        payload = json.dumps([message, tree, parents, len(self.commits)])
        sha = hashlib.sha1(payload.encode()).hexdigest()
        self.commits[sha] = {"tree": tree, "parents": parents, "message": message}
        return sha

    def update_ref(self, branch: str, sha: str) -> None:
        self.calls.append("update_ref")
        if self.before_update_ref is not None:
            hook, self.before_update_ref = self.before_update_ref, None
            hook()
        current = self.refs.get(branch)
        if current not in self.commits[sha]["parents"]:
            raise RefConflictError(422, f"/git/refs/heads/{branch}", "not a fast forward")
        self.refs[branch] = sha

    def create_ref(self, branch: str, sha: str) -> None:
        self.calls.append("create_ref")
        if branch in self.refs:
            raise RefConflictError(422, "/git/refs", "reference already exists")
        self.refs[branch] = sha

    # -- test helpers -------------------------------------------------

    def push_files(
        self,
        files: dict[str, Optional[str | bytes]],
        branch: str = "main",
        message: str = "edit elsewhere",
    ) -> str:
        """Commit directly to *branch*, as another device would.

        A value of ``None`` deletes the path.
        """
        head = self.refs.get(branch)
        base = dict(self.trees[self.commits[head]["tree"]]) if head else {}
        for path, content in files.items():
            if content is None:
                base.pop(path, None)
                continue
            data = content.encode("utf-8") if isinstance(content, str) else content
            sha = git_blob_sha(data)
            self.blobs[sha] = data
            base[path] = sha
        tree = hashlib.sha1(json.dumps(base, sort_keys=True).encode()).hexdigest()
        self.trees[tree] = base
        commit = self.create_commit(message, tree, [head] if head else [])
        self.refs[branch] = commit
        return commit

    def files(self, branch: str = "main") -> dict[str, bytes]:
        """Return every file at the head of *branch*."""
        head = self.refs.get(branch)
        if head is None:
            return {}
        tree = self.trees[self.commits[head]["tree"]]
        return {path: self.blobs[sha] for path, sha in tree.items()}

    def text(self, path: str, branch: str = "main") -> str:
        return self.files(branch)[path].decode("utf-8")

    def sha(self, path: str, branch: str = "main") -> str:
        head = self.refs[branch]
        return self.trees[self.commits[head]["tree"]][path]

    def commit_count(self, branch: str = "main") -> int:
        count = 0
        sha = self.refs.get(branch)
        while sha:
            count += 1
            parents = self.commits[sha]["parents"]
            sha = parents[0] if parents else None
        return count


@pytest.fixture
def config(tmp_path: Path) -> Config:
    """A validated-looking Config for a fake repository."""
    return Config(
        owner="octocat",
        repo="notes",
        branch="main",
        token="test-token",
        store_path=str(tmp_path / "store.json"),
    )


@pytest.fixture
def fake_remote() -> FakeGitHubClient:
    return FakeGitHubClient()


@pytest.fixture
def make_device(tmp_path: Path, fake_remote: FakeGitHubClient, config: Config):
    """Factory for (store, engine) pairs sharing ``fake_remote``.

    Each name gets its own store file, so two names behave like two devices
    syncing the same repository.
    """

    def _make(name: str = "laptop", **config_overrides: Any):
        store = JsonLocalStore(tmp_path / f"{name}.json")
        device_config = Config(**{**config.__dict__, **config_overrides})
        engine = SyncEngine(store, fake_remote, device_config, BlobCache())
        return store, engine

    return _make
