"""Exception hierarchy shared by the transport layer and the sync engine.

Two families:

* Pass-aborting errors (``TransportError`` and its subclasses) propagate
  out of ``SyncEngine.sync_bidirectional`` unchanged.  A
  ``RefConflictError`` means the branch moved while a commit was being
  built; callers re-run the whole pass.
* Per-file errors (``ContentDecodeError``, ``MissingContentError``) are
  caught by the engine, logged, and the file is skipped for that pass.
"""


class GitNoteError(Exception):
    """Base class for all gitnote-sync errors."""


class TransportError(GitNoteError):
    """A remote request failed with an unexpected status.

    Attributes:
        status: HTTP status code (``0`` for connection-level failures).
        path: API path or repository path the request was about.
    """

    def __init__(self, status: int, path: str, message: str = "") -> None:
        self.status = status
        self.path = path
        self.message = message
        detail = f": {message}" if message else ""
        super().__init__(f"HTTP {status} for {path}{detail}")


class RefConflictError(TransportError):
    """The fast-forward ref update was rejected because the branch moved."""


class AuthenticationRequiredError(TransportError):
    """A write operation was attempted without an access token."""

    def __init__(self, path: str) -> None:
        super().__init__(401, path, "an access token is required for writes")


class ContentDecodeError(GitNoteError):
    """Remote content could not be decoded (bad base64 or invalid UTF-8)."""

    def __init__(self, path: str, reason: str = "") -> None:
        self.path = path
        self.reason = reason
        super().__init__(
            f"Cannot decode content of {path}"
            + (f": {reason}" if reason else "")
        )


class MissingContentError(GitNoteError):
    """The bytes behind a binary file or asset reference are unavailable."""

    def __init__(self, path: str, blob_sha: str | None = None) -> None:
        self.path = path
        self.blob_sha = blob_sha
        super().__init__(
            f"Content for {path} is not available"
            + (f" (blob {blob_sha})" if blob_sha else "")
        )
