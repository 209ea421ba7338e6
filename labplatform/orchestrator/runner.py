"""In-process executor for provisioning runs.

Runs are ``asyncio`` tasks owned by the runner, not by whoever submitted
them, so cancelling or timing out the submitting call never aborts a run.
A semaphore bounds how many runs execute at once and at most one task per
request id is active. A submit for a key whose task is still running is
queued and started once that task ends; repeated submits in the meantime
collapse into one follow-up run.
"""

import asyncio
from collections.abc import Awaitable, Callable
from functools import partial

import structlog

from labplatform.correlation import get_correlation_id, set_correlation_id

logger = structlog.get_logger(__name__)


class ProvisioningRunner:
    def __init__(self, max_concurrency: int = 4):
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: dict[str, asyncio.Task] = {}
        self._queued: dict[str, Callable[[], Awaitable[object]]] = {}
        self._closed = False

    def submit(self, key: str, factory: Callable[[], Awaitable[object]]) -> bool:
        """Schedule factory() as a task for key.

        Returns False when a task for the same key is still active; factory
        then runs after it finishes.
        """
        if self._closed:
            raise RuntimeError("provisioning runner is shut down")

        existing = self._tasks.get(key)
        if existing and not existing.done():
            self._queued[key] = factory
            logger.info("provisioning_task_queued", request_id=key)
            return False

        self._start(key, factory)
        return True

    def _start(self, key: str, factory: Callable[[], Awaitable[object]]) -> None:
        task = asyncio.create_task(self._run(key, factory), name=f"provision-{key}")
        self._tasks[key] = task
        task.add_done_callback(partial(self._forget, key))
        logger.debug("provisioning_task_submitted", request_id=key)

    def is_active(self, key: str) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def drain(self) -> None:
        """Wait until every submitted task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self, cancel: bool = False) -> None:
        """Stop accepting work and wait for (or cancel) running tasks."""
        self._closed = True
        if cancel:
            self._queued.clear()
            for task in self._tasks.values():
                task.cancel()
        await self.drain()
        logger.info("provisioning_runner_stopped", cancelled=cancel)

    async def _run(self, key: str, factory: Callable[[], Awaitable[object]]) -> None:
        async with self._semaphore:
            # Runs in a copy of the submitter's context; bindings stay local
            structlog.contextvars.bind_contextvars(request_id=key)
            set_correlation_id(get_correlation_id())
            try:
                await factory()
            except Exception:
                logger.exception("provisioning_task_crashed", request_id=key)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is not task:
            return
        del self._tasks[key]
        factory = self._queued.pop(key, None)
        if factory is not None:
            self._start(key, factory)
