"""Best-effort background effects for fire-and-forget side work.

Cache population and usage-counter bumps must never block or fail the main
result path.  :class:`BackgroundEffects` runs such coroutines as detached
asyncio tasks, keeps a strong reference until each finishes (the event loop
only holds weak references to tasks), and logs -- never propagates -- any
exception they raise.

:meth:`BackgroundEffects.drain` awaits whatever is still in flight; the
worker CLI calls it before exiting and the tests call it before asserting
on cache contents.
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine

import structlog

from chatiq_kb.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)


class BackgroundEffects:
    """Registry of detached best-effort tasks.

    Parameters
    ----------
    logger:
        Optional structured logger for failure warnings.
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._logger = logger or _logger
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task[Any]:
        """Schedule *coro* without awaiting it.

        The returned task is tracked until completion.  Exceptions are
        logged under ``background_effect_failed`` with the effect *name*.
        """
        task = asyncio.get_running_loop().create_task(self._guarded(coro, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight effect to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _guarded(self, coro: Coroutine[Any, Any, Any], name: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 -- best-effort by contract
            self._logger.warning("background_effect_failed", effect=name, error=str(exc))
