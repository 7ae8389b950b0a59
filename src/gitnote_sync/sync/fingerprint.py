"""Content fingerprints used for change and rename detection.

Fingerprints follow Git's own blob addressing, so the fingerprint of a
binary file is byte-for-byte the content identifier the remote reports
for the same bytes.  Markdown is normalised first (BOM, line endings) so
the same note hashes identically on every platform.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from gitnote_sync.sync.models import FileKind


def git_blob_sha(data: bytes) -> str:
    """Return Git's object id for a blob holding *data*.

    Git hashes ``b"blob <len>\\0" + data`` with SHA-1, where ``<len>`` is
    the byte length in decimal.
    """
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


def normalize_text(text: str) -> str:
    """Strip a leading BOM and convert CRLF/CR line endings to LF."""
    text = text.lstrip("\ufeff")
    return text.replace("\r\n", "\n").replace("\r", "\n")


def decode_base64(content: str) -> bytes:
    """Decode a base64 payload, tolerating the newlines GitHub inserts.

    Raises:
        binascii.Error: If *content* is not valid base64.
    """
    compact = "".join(content.split())
    return base64.b64decode(compact, validate=True)


def fingerprint(
    kind: FileKind | str,
    content: str,
    remote_id: str | None = None,
) -> str:
    """Compute the fingerprint of *content* for a file of *kind*.

    Args:
        kind: The file kind.
        content: Markdown text, base64 bytes, or a referenced blob sha.
        remote_id: Known remote content id for binary content.  Reused as
            the fingerprint to avoid hashing large blobs twice.

    Returns:
        A 40-character hex digest.
    """
    kind = FileKind(kind)
    if kind is FileKind.MARKDOWN:
        return git_blob_sha(normalize_text(content).encode("utf-8"))
    if kind is FileKind.ASSET_REFERENCE:
        return content
    if remote_id:
        return remote_id
    try:
        data = decode_base64(content)
    except (binascii.Error, ValueError):
        # Not valid base64; hash what we have so the value stays stable.
        data = content.encode("utf-8")
    return git_blob_sha(data)
