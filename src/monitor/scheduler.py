"""Named periodic tasks, each an independent asyncio loop.

A run that raises is logged and the loop keeps going; one task failing never
delays or stops another. The interval is measured from the end of a run, so a
slow sweep never overlaps itself.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from loguru import logger


@dataclass
class PeriodicTask:
    name: str
    interval_sec: float
    func: Callable[[], Awaitable[object]]
    initial_delay_sec: float = 0.0
    runs: int = 0
    failures: int = 0


class Scheduler:
    def __init__(self) -> None:
        self._tasks: dict[str, PeriodicTask] = {}
        self._running: dict[str, asyncio.Task] = {}

    @property
    def tasks(self) -> dict[str, PeriodicTask]:
        return dict(self._tasks)

    def add(
        self,
        name: str,
        interval_sec: float,
        func: Callable[[], Awaitable[object]],
        *,
        initial_delay_sec: float = 0.0,
    ) -> PeriodicTask:
        if name in self._tasks:
            raise ValueError(f"periodic task {name!r} already registered")
        task = PeriodicTask(name, interval_sec, func, initial_delay_sec)
        self._tasks[name] = task
        return task

    def start(self) -> None:
        for name, task in self._tasks.items():
            if name in self._running:
                logger.warning(f"[SCHED] {name} is already running")
                continue
            self._running[name] = asyncio.create_task(self._loop(task), name=f"periodic:{name}")
            logger.info(f"[SCHED] Started {name} (every {task.interval_sec:g}s)")

    async def _loop(self, task: PeriodicTask) -> None:
        if task.initial_delay_sec:
            await asyncio.sleep(task.initial_delay_sec)
        while True:
            await self.run_once(task)
            await asyncio.sleep(task.interval_sec)

    async def run_once(self, task: PeriodicTask) -> None:
        task.runs += 1
        try:
            await task.func()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.failures += 1
            logger.error(f"[SCHED] {task.name} run #{task.runs} failed: {e}")

    async def stop(self) -> None:
        running = list(self._running.values())
        for t in running:
            t.cancel()
        await asyncio.gather(*running, return_exceptions=True)
        self._running.clear()
        logger.info("[SCHED] All periodic tasks stopped")
