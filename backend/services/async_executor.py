"""
Thread pool for the synchronous libraries the storefront depends on:
reportlab (invoice PDFs), openpyxl (order exports) and the Resend SDK.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, TypeVar

logger = logging.getLogger(__name__)

POOL_SIZE = 4

T = TypeVar("T")

_pool: ThreadPoolExecutor | None = None


def _get_pool() -> ThreadPoolExecutor:
    global _pool
    if _pool is None:
        _pool = ThreadPoolExecutor(max_workers=POOL_SIZE, thread_name_prefix="storefront-io")
        logger.info(f"Blocking-call pool started ({POOL_SIZE} workers)")
    return _pool


async def run_blocking(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """Await `func(*args, **kwargs)` executed on the pool."""
    call = functools.partial(func, *args, **kwargs)
    return await asyncio.get_running_loop().run_in_executor(_get_pool(), call)


def shutdown_executor() -> None:
    """Called from the app lifespan; waits for in-flight renders and sends."""
    global _pool
    if _pool is None:
        return
    _pool.shutdown(wait=True)
    _pool = None
    logger.info("Blocking-call pool stopped")
