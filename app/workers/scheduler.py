"""
Embedded worker scheduler.

Runs the queue, resync and webhook ticks as background asyncio tasks inside
the API process. Each worker loops tick -> sleep until it is cancelled; an
exception in a tick is logged and the loop goes on.
"""
import asyncio
from typing import Any, Awaitable, Callable

from app.core.config import settings
from app.core.logging import get_logger
from app.workers.jobs import run_queue_tick, run_resync_tick, run_webhook_tick

logger = get_logger(__name__)


class PeriodicWorker:
    def __init__(
        self,
        name: str,
        tick: Callable[[], Awaitable[Any]],
        interval_seconds: float,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self._tick = tick
        self._task: asyncio.Task | None = None
        self.ticks = 0
        self.errors = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            try:
                await self._tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.errors += 1
                logger.error(
                    f"Worker {self.name} tick failed",
                    extra_data={"worker": self.name, "error": str(e)},
                    exc_info=True,
                )
            self.ticks += 1
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        logger.info(
            f"Worker {self.name} started",
            extra_data={"worker": self.name, "interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"Worker {self.name} stopped", extra_data={"worker": self.name})


class WorkerScheduler:
    """Owns one PeriodicWorker per background job"""

    def __init__(self, workers: list[PeriodicWorker]):
        self.workers = workers

    @classmethod
    def default(cls, session_factory: Callable[[], Any]) -> "WorkerScheduler":
        return cls([
            PeriodicWorker(
                "integration-queue",
                lambda: run_queue_tick(session_factory),
                settings.QUEUE_POLL_INTERVAL_SECONDS,
            ),
            PeriodicWorker(
                "analytics-resync",
                lambda: run_resync_tick(session_factory),
                settings.RESYNC_POLL_INTERVAL_SECONDS,
            ),
            PeriodicWorker(
                "analytics-webhooks",
                lambda: run_webhook_tick(session_factory),
                settings.WEBHOOK_POLL_INTERVAL_SECONDS,
            ),
        ])

    @property
    def running(self) -> bool:
        return any(worker.running for worker in self.workers)

    def start(self) -> None:
        for worker in self.workers:
            worker.start()

    async def stop(self) -> None:
        await asyncio.gather(*(worker.stop() for worker in self.workers))
