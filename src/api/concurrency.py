"""
Blocking-call offload for async routes.

bcrypt work is CPU-bound. Routes hand domain calls to a bounded
ThreadPoolExecutor (sized to the CPU count by default) instead of
running them on the event loop.
"""

import asyncio
import functools
import os
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, TypeVar

T = TypeVar("T")


def create_hashing_executor(workers: int | None = None) -> ThreadPoolExecutor:
    """Create the bounded pool that runs bcrypt-bound domain calls."""
    return ThreadPoolExecutor(
        max_workers=workers or os.cpu_count() or 1,
        thread_name_prefix="hashing",
    )


async def run_blocking(executor: Executor, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Run `func(*args, **kwargs)` on `executor` and await its result."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(executor, functools.partial(func, *args, **kwargs))
