"""Core GitHub client functionality shared between the CLI and the sync engine."""

from .async_utils import run_sync
from .cache import BlobCache
from .client import GitHubClient

__all__ = ["BlobCache", "GitHubClient", "run_sync"]
