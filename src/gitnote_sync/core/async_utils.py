"""Async utilities for bridging blocking HTTP calls into the sync engine."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The GitHub client is built on ``requests`` and blocks; every remote call
    made by the sync engine goes through this wrapper.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        client = GitHubClient(config)
        head = await run_sync(client.get_ref, "main")
    """
    return await asyncio.to_thread(func, *args, **kwargs)
