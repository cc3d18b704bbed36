"""Periodic evaluation worker."""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from src.alerts.manager import AlertManager
from src.alerts.models import AlertInstance, EvaluationContext
from src.logging_config import PerformanceTimer

logger = logging.getLogger(__name__)


@runtime_checkable
class SnapshotProvider(Protocol):
    """Supplies the read-only sensor snapshot for a pass."""

    async def get_evaluation_context(self, current_time: datetime) -> EvaluationContext: ...


class StaticSnapshotProvider:
    """Serves one fixed snapshot on every pass."""

    def __init__(self, context: EvaluationContext) -> None:
        self._context = context

    async def get_evaluation_context(self, current_time: datetime) -> EvaluationContext:
        return self._context


class EvaluationWorker:
    """Runs evaluation passes on a fixed interval.

    A failing pass is logged and the loop continues with the next one.

    Example:
        worker = EvaluationWorker(manager, provider, interval_seconds=300)
        await worker.start()
        ...
        await worker.stop()
    """

    def __init__(
        self,
        manager: AlertManager,
        provider: SnapshotProvider,
        interval_seconds: Optional[float] = None,
    ) -> None:
        self.manager = manager
        self.provider = provider
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else manager.config.evaluation_interval_seconds
        )
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.passes_run = 0
        self.passes_failed = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def run_once(self) -> list[AlertInstance]:
        """Fetch a snapshot and run one pass."""
        now = self.manager.clock()
        with PerformanceTimer("snapshot_fetch"):
            context = await self.provider.get_evaluation_context(now)
        alerts = await self.manager.run_pass(context)
        self.passes_run += 1
        return alerts

    async def start(self) -> None:
        """Start the evaluation loop in the background."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Evaluation worker started (interval=%ss)", self.interval_seconds)

    async def stop(self) -> None:
        """Stop the loop and cancel pending escalations and retries."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
            self._task = None
        await self.manager.shutdown()
        logger.info("Evaluation worker stopped")

    async def run_forever(self, max_passes: Optional[int] = None) -> None:
        """Run passes in the foreground until stopped or ``max_passes`` is hit."""
        self._running = True
        try:
            await self._loop(max_passes)
        finally:
            self._running = False

    async def _loop(self, max_passes: Optional[int] = None) -> None:
        completed = 0
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception:
                self.passes_failed += 1
                logger.exception("Evaluation pass failed")

            completed += 1
            if max_passes is not None and completed >= max_passes:
                break
            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break
