"""Keeps one polling task alive per active monitor."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol

from .models import MonitorConfig, RunSummary

logger = logging.getLogger(__name__)

RECONCILE_INTERVAL_SECONDS = 60.0


class ConfigStore(Protocol):

    def list_active_monitors(self) -> List[MonitorConfig]:
        ...

    def get_monitor(self, monitor_id: int) -> Optional[MonitorConfig]:
        ...


class Runner(Protocol):

    async def run(self, config: MonitorConfig) -> RunSummary:
        ...


@dataclass
class RunningJob:
    """A live polling loop for one monitor."""

    monitor_id: int
    config: MonitorConfig
    task: asyncio.Task

    @property
    def alive(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        self.task.cancel()


class MonitorScheduler:
    """Reconciles running polling loops against the active monitor set.

    A reconciliation pass runs every ``reconcile_interval`` seconds. Each
    monitor loop runs a cycle immediately and then sleeps for the interval
    of the config it was started with; interval edits apply once the job is
    restarted. Config reads use a private thread, so reconciliation keeps
    working while monitor cycles are stuck in their fetches.
    """

    def __init__(
        self,
        store: ConfigStore,
        runner: Runner,
        reconcile_interval: float = RECONCILE_INTERVAL_SECONDS,
    ):
        self.store = store
        self.runner = runner
        self.reconcile_interval = reconcile_interval
        self._jobs: Dict[int, RunningJob] = {}
        self._lock = asyncio.Lock()
        self._reconcile_task: Optional[asyncio.Task] = None
        self._executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="auctionwatch-config"
        )

    def running_ids(self) -> List[int]:
        return sorted(job_id for job_id, job in self._jobs.items() if job.alive)

    def is_running(self, monitor_id: int) -> bool:
        job = self._jobs.get(monitor_id)
        return job is not None and job.alive

    def start(self) -> None:
        if self._reconcile_task and not self._reconcile_task.done():
            return
        logger.info("Starting monitor scheduler (reconcile every %ss)", self.reconcile_interval)
        self._reconcile_task = asyncio.create_task(
            self._reconcile_loop(), name="reconcile-monitors"
        )

    async def serve(self) -> None:
        """Run until cancelled, then shut every job down."""
        self.start()
        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        logger.info("Stopping monitor scheduler")
        tasks = []
        if self._reconcile_task:
            self._reconcile_task.cancel()
            tasks.append(self._reconcile_task)
            self._reconcile_task = None
        async with self._lock:
            for job in self._jobs.values():
                job.cancel()
                tasks.append(job.task)
            self._jobs.clear()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def reconcile(self) -> None:
        """Align running jobs with the currently active configurations."""
        active_configs = await self._read(self.store.list_active_monitors)
        active = {config.id: config for config in active_configs}

        async with self._lock:
            for monitor_id in list(self._jobs):
                if monitor_id not in active:
                    self._jobs.pop(monitor_id).cancel()
                    logger.info("Stopped job for monitor %d", monitor_id)

            for monitor_id, config in active.items():
                job = self._jobs.get(monitor_id)
                if job is not None and job.alive:
                    continue
                if job is not None:
                    logger.warning("Job for monitor %s died; restarting", config.name)
                self._start_job(config)

    async def run_now(self, monitor_id: int) -> Optional[RunSummary]:
        """Run one cycle for ``monitor_id`` outside of its schedule."""
        config = await self._read(self.store.get_monitor, monitor_id)
        if config is None:
            logger.warning("Manual run requested for unknown monitor %d", monitor_id)
            return None
        logger.info("Running monitor %s manually", config.name)
        return await self.runner.run(config)

    def _start_job(self, config: MonitorConfig) -> None:
        task = asyncio.create_task(
            self._monitor_loop(config), name=f"monitor-{config.id}"
        )
        job = RunningJob(monitor_id=config.id, config=config, task=task)
        self._jobs[config.id] = job
        task.add_done_callback(lambda _task: self._forget(job))
        logger.info(
            "Started job for monitor %s (every %d minutes)",
            config.name,
            config.interval_minutes,
        )

    async def _read(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _forget(self, job: RunningJob) -> None:
        if self._jobs.get(job.monitor_id) is job:
            del self._jobs[job.monitor_id]

    async def _monitor_loop(self, config: MonitorConfig) -> None:
        while True:
            try:
                await self.runner.run(config)
            except Exception:  # noqa: BLE001
                logger.exception("Cycle failed for monitor %s", config.name)
            await asyncio.sleep(config.interval_minutes * 60)

    async def _reconcile_loop(self) -> None:
        while True:
            try:
                await self.reconcile()
            except Exception:  # noqa: BLE001
                logger.exception("Reconciliation pass failed")
            await asyncio.sleep(self.reconcile_interval)
