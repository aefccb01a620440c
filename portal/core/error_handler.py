"""Resilience helpers for background work (cache sweeper, rollups, cron jobs)."""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Optional, ParamSpec, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def resilient_task(
    *,
    task_name: str,
    retry_on_error: bool = True,
    retry_delay: float = 5.0,
    max_retries: Optional[int] = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """
    Decorator that restarts a long-running coroutine after a failure.

    Args:
        task_name: Human-readable name for logging
        retry_on_error: Whether to retry on exceptions
        retry_delay: Delay in seconds before retry
        max_retries: Maximum number of retries (None = infinite)

    Example:
        @resilient_task(task_name="cache_sweeper")
        async def sweep():
            while True:
                cache.cleanup()
                await asyncio.sleep(60)
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    logger.info("%s cancelled, shutting down", task_name)
                    raise
                except Exception as exc:
                    attempt += 1
                    logger.error(
                        "%s failed (attempt %d): %s",
                        task_name,
                        attempt,
                        exc,
                        exc_info=True,
                    )
                    if not retry_on_error or (max_retries and attempt >= max_retries):
                        logger.critical(
                            "%s permanently failed after %d attempts",
                            task_name,
                            attempt,
                        )
                        raise
                    logger.warning(
                        "%s will retry in %.1fs (attempt %d)",
                        task_name,
                        retry_delay,
                        attempt,
                    )
                    await asyncio.sleep(retry_delay)

        return wrapper

    return decorator


def safe_background_task(
    task_name: str,
    task_coro: Awaitable[Any],
    *,
    daemon: bool = True,
) -> asyncio.Task:
    """
    Schedule a coroutine on the running loop and log its failure.

    Args:
        task_name: Human-readable name for the task
        task_coro: The coroutine to run
        daemon: If True, cancellation is swallowed on shutdown

    Returns:
        The created asyncio.Task
    """

    async def wrapped() -> Any:
        try:
            return await task_coro
        except asyncio.CancelledError:
            logger.info("Background task '%s' cancelled", task_name)
            if not daemon:
                raise
        except Exception:
            logger.exception("Background task '%s' failed", task_name)
            raise

    return asyncio.create_task(wrapped(), name=task_name)


class GracefulShutdown:
    """Tracks background tasks and cancels them on application shutdown."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self.tasks: list[asyncio.Task] = []

    def add_task(self, task: asyncio.Task) -> None:
        self.tasks.append(task)

    async def shutdown(self) -> None:
        if not self.tasks:
            return

        logger.info("Shutting down %d background tasks", len(self.tasks))
        for task in self.tasks:
            if not task.done():
                task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*self.tasks, return_exceptions=True),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Timeout waiting for background tasks after %.1fs",
                self.timeout,
            )
        self.tasks.clear()


__all__ = ["GracefulShutdown", "resilient_task", "safe_background_task"]
