"""Read side of the remote repository: tree listings and file contents.

``RemoteTreeReader`` flattens the tree at a branch head into
``RemoteEntry`` objects for tracked paths only.  ``RemoteFilePuller``
fetches content for one path, decoding Markdown to text and, when lazy
binary mode is on, returning binary files as asset references (the blob
sha) that ``resolve_reference`` can turn back into bytes later.

Both classes are synchronous; the engine runs them through ``run_sync``.
"""

from __future__ import annotations

import binascii
import logging

from gitnote_sync.core.cache import BlobCache
from gitnote_sync.core.client import GitHubClient
from gitnote_sync.core.errors import ContentDecodeError, MissingContentError
from gitnote_sync.sync.fingerprint import decode_base64
from gitnote_sync.sync.models import (
    FileKind,
    PulledFile,
    RemoteEntry,
    classify_path,
)

logger = logging.getLogger(__name__)


class RemoteTreeReader:
    """List tracked files at a branch head.

    Args:
        client: Transport for the repository.
    """

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    def list_entries(self, ref: str) -> list[RemoteEntry]:
        """Return every tracked file at the head of *ref*, sorted by path.

        A missing branch (or an empty repository) yields an empty list.
        Unsupported file types and non-blob entries are filtered out.
        """
        head = self._client.get_ref(ref)
        if head is None:
            logger.info("Branch %s not found; treating remote as empty", ref)
            return []

        commit = self._client.get_commit(head)
        tree = self._client.get_tree(commit["tree"]["sha"], recursive=True)
        if tree.get("truncated"):
            logger.warning(
                "Tree listing for %s was truncated; some files are not synced",
                ref,
            )

        entries: list[RemoteEntry] = []
        for item in tree.get("tree", []):
            if item.get("type") != "blob":
                continue
            kind = classify_path(item["path"])
            if kind is None:
                continue
            entries.append(
                RemoteEntry(path=item["path"], content_id=item["sha"], kind=kind)
            )
        entries.sort(key=lambda e: e.path)
        logger.debug("Remote %s lists %d tracked file(s)", ref, len(entries))
        return entries


class RemoteFilePuller:
    """Fetch content of remote files.

    Args:
        client: Transport for the repository.
        blob_cache: Shared cache of decoded blob payloads.
        ref: Branch used for path lookups when no content id is known.
        lazy_binary: Return binary files as asset references instead of
            downloading their bytes.
    """

    def __init__(
        self,
        client: GitHubClient,
        blob_cache: BlobCache,
        ref: str,
        lazy_binary: bool = True,
    ) -> None:
        self._client = client
        self._cache = blob_cache
        self._ref = ref
        self._lazy_binary = lazy_binary

    def pull(self, path: str, content_id: str | None = None) -> PulledFile | None:
        """Fetch the content of *path*.

        Args:
            path: Repository-relative path of a tracked file.
            content_id: Blob sha from the tree listing.  When omitted the
                path is looked up on the configured branch.

        Returns:
            The pulled file, or ``None`` if the path (or its blob) is
            confirmed absent.

        Raises:
            ContentDecodeError: If the payload is not valid base64 or a
                Markdown file is not valid UTF-8.
            TransportError: On any other remote failure.
        """
        kind = classify_path(path) or FileKind.BINARY

        if content_id is None:
            meta = self._client.get_contents(path, self._ref)
            if meta is None:
                return None
            content_id = meta["sha"]
            inline = meta.get("content") or ""
            if inline and meta.get("encoding", "base64") == "base64":
                data = self._decode(path, inline)
                self._cache.put(self._client.owner, self._client.repo, content_id, data)

        if kind is FileKind.BINARY and self._lazy_binary:
            return PulledFile(
                path=path,
                content=content_id,
                content_id=content_id,
                kind=FileKind.ASSET_REFERENCE,
            )

        data = self.fetch_blob(content_id, path)
        if data is None:
            return None

        if kind is FileKind.MARKDOWN:
            content = self._decode_text(path, data)
        else:
            content = binascii.b2a_base64(data, newline=False).decode("ascii")
        return PulledFile(path=path, content=content, content_id=content_id, kind=kind)

    def fetch_blob(self, blob_sha: str, path: str = "") -> bytes | None:
        """Return the bytes of a blob through the cache, or ``None`` if gone."""
        owner, repo = self._client.owner, self._client.repo
        data = self._cache.get(owner, repo, blob_sha)
        if data is not None:
            return data
        payload = self._client.get_blob(blob_sha)
        if payload is None:
            return None
        data = self._decode(path or blob_sha, payload)
        self._cache.put(owner, repo, blob_sha, data)
        return data

    def fetch_text(self, blob_sha: str, path: str = "") -> str | None:
        """Return a blob decoded as Markdown text, or ``None`` if gone."""
        data = self.fetch_blob(blob_sha, path)
        if data is None:
            return None
        return self._decode_text(path or blob_sha, data)

    def resolve_reference(self, blob_sha: str, path: str = "") -> bytes:
        """Materialise the bytes behind an asset reference.

        Raises:
            MissingContentError: If the blob cannot be found.
        """
        data = self.fetch_blob(blob_sha, path)
        if data is None:
            raise MissingContentError(path or blob_sha, blob_sha)
        return data

    @staticmethod
    def _decode(path: str, payload: str) -> bytes:
        try:
            return decode_base64(payload)
        except (binascii.Error, ValueError) as e:
            raise ContentDecodeError(path, "invalid base64") from e

    @staticmethod
    def _decode_text(path: str, data: bytes) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentDecodeError(path, "not valid UTF-8") from e
