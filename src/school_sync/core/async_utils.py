"""Async utilities for bridging blocking HTTP calls into the sync engine."""

import asyncio
import logging
from typing import Any, Callable, TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    The remote client is built on ``requests``; every remote call made by
    the engine goes through here so periodic ticks and connectivity
    changes keep being served while a request is in flight.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        users = await run_sync(client.list_users)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def cancel_task(task: "asyncio.Task[Any] | None") -> None:
    """Cancel *task* and wait for it to finish.

    ``CancelledError`` raised by the task itself is absorbed; any other
    exception it ended with is logged.
    """
    if task is None or task.done():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.exception("Task %s failed while cancelling", task.get_name())
