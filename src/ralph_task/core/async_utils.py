"""Async utilities for running the blocking sync engine from MCP handlers."""

import asyncio
from typing import Any, Callable, TypeVar

T = TypeVar("T")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a worker thread.

    The engine, the Trello client and the PRD store are all blocking, so
    MCP tool handlers call them through this to keep the event loop free.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        plan, state = await run_sync(
            sync_with_state_file, engine, options,
            state_path=path, board_id=board_id,
        )
    """
    return await asyncio.to_thread(func, *args, **kwargs)
