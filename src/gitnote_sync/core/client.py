import base64
import logging
import threading
from typing import Any, Callable
from urllib.parse import quote

import requests

from ..config import Config
from .errors import (
    AuthenticationRequiredError,
    RefConflictError,
    TransportError,
)

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


class GitHubClient:
    """Thin wrapper over the GitHub REST git-data API for one repository.

    Args:
        config: Repository coordinates, API base URL and request timeout.
        token_provider: Zero-argument callable returning an access token or
            ``None``.  Consulted on every request; defaults to the token
            from *config*.
    """

    def __init__(
        self,
        config: Config,
        token_provider: TokenProvider | None = None,
    ):
        self.config = config
        self._token_provider = token_provider or (lambda: config.token)
        self._thread_local = threading.local()
        self.repo_url = self._get_repo_url()

    @property
    def owner(self) -> str:
        return self.config.owner

    @property
    def repo(self) -> str:
        return self.config.repo

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_repo_url(self) -> str:
        return (
            f"{self.config.api_base.rstrip('/')}/repos/"
            f"{quote(self.config.owner, safe='')}/{quote(self.config.repo, safe='')}"
        )

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "gitnote-sync",
            }
        )
        return session

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
        write: bool = False,
        allow_404: bool = False,
    ) -> Any:
        """
        Send one API request and return the decoded JSON body.

        Returns ``None`` for a 404 when *allow_404* is set.
        """
        token = self._token_provider()
        if write and not token:
            raise AuthenticationRequiredError(path)

        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        url = f"{self.repo_url}{path}"
        logger.debug("%s %s", method, url)
        try:
            response = self._get_session().request(
                method,
                url,
                params=params,
                json=payload,
                headers=headers,
                timeout=self.config.request_timeout,
            )
        except requests.RequestException as e:
            raise TransportError(0, path, str(e)) from e

        if response.status_code == 404 and allow_404:
            return None
        if not response.ok:
            raise TransportError(
                response.status_code, path, self._error_message(response)
            )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("message", ""))
        return ""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_repo(self) -> dict[str, Any]:
        """
        Get repository metadata (default branch, visibility).
        """
        return self._request("GET", "")

    def get_ref(self, branch: str) -> str | None:
        """
        Get the commit sha a branch points at.

        Returns:
            The head commit sha, or ``None`` if the branch does not exist
            (including an empty repository).
        """
        data = self._request(
            "GET", f"/git/ref/heads/{quote(branch)}", allow_404=True
        )
        if data is None:
            return None
        return data["object"]["sha"]

    def get_commit(self, sha: str) -> dict[str, Any]:
        """
        Get a commit object.  The root tree is at ``["tree"]["sha"]``.
        """
        return self._request("GET", f"/git/commits/{sha}")

    def get_tree(self, sha: str, recursive: bool = True) -> dict[str, Any]:
        """
        Get a tree object, flattened when *recursive* is set.

        Returns:
            Dict with ``tree`` (list of entries with path, type, sha, mode)
            and ``truncated``.
        """
        params = {"recursive": "1"} if recursive else None
        return self._request("GET", f"/git/trees/{sha}", params=params)

    def get_blob(self, sha: str) -> str | None:
        """
        Get a blob's payload as base64 text.

        Returns:
            The base64 content, or ``None`` if the blob does not exist.
        """
        data = self._request("GET", f"/git/blobs/{sha}", allow_404=True)
        if data is None:
            return None
        return data.get("content", "")

    def get_contents(self, path: str, ref: str) -> dict[str, Any] | None:
        """
        Get a file through the contents API.

        Returns:
            Dict with ``sha``, ``content`` (base64, may be empty for large
            files) and ``download_url``; ``None`` if the path is absent.
        """
        data = self._request(
            "GET",
            f"/contents/{quote(path)}",
            params={"ref": ref},
            allow_404=True,
        )
        if data is None or isinstance(data, list):
            # A directory listing is not a file.
            return None
        return data

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_blob(self, data: bytes) -> str:
        """
        Upload *data* as a blob and return its sha.
        """
        body = self._request(
            "POST",
            "/git/blobs",
            payload={
                "content": base64.b64encode(data).decode("ascii"),
                "encoding": "base64",
            },
            write=True,
        )
        return body["sha"]

    def create_tree(
        self, base_tree: str | None, entries: list[dict[str, Any]]
    ) -> str:
        """
        Create a tree from *base_tree* plus sparse overrides.

        Args:
            base_tree: Tree sha to start from, or ``None`` for an empty tree.
            entries: Items with ``path``, ``mode``, ``type`` and ``sha``.
                A ``sha`` of ``None`` deletes the path.

        Returns:
            The new tree sha.
        """
        payload: dict[str, Any] = {"tree": entries}
        if base_tree:
            payload["base_tree"] = base_tree
        body = self._request("POST", "/git/trees", payload=payload, write=True)
        return body["sha"]

    def create_commit(
        self, message: str, tree: str, parents: list[str]
    ) -> str:
        """
        Create a commit object and return its sha.
        """
        body = self._request(
            "POST",
            "/git/commits",
            payload={"message": message, "tree": tree, "parents": parents},
            write=True,
        )
        return body["sha"]

    def update_ref(self, branch: str, sha: str) -> None:
        """
        Fast-forward *branch* to *sha*.  Never forced.

        Raises:
            RefConflictError: If the update is not a fast-forward because
                the branch moved since the commit's parent was read.
        """
        path = f"/git/refs/heads/{quote(branch)}"
        try:
            self._request(
                "PATCH",
                path,
                payload={"sha": sha, "force": False},
                write=True,
            )
        except TransportError as e:
            if e.status in (409, 422):
                raise RefConflictError(e.status, e.path, e.message) from e
            raise

    def create_ref(self, branch: str, sha: str) -> None:
        """
        Create *branch* pointing at *sha*.

        Raises:
            RefConflictError: If the branch was created concurrently.
        """
        try:
            self._request(
                "POST",
                "/git/refs",
                payload={"ref": f"refs/heads/{branch}", "sha": sha},
                write=True,
            )
        except TransportError as e:
            if e.status == 422:
                raise RefConflictError(e.status, e.path, e.message) from e
            raise
