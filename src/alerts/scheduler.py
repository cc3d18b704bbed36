"""Delayed task scheduling with cancellation keys."""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[object]]


@dataclass
class ScheduledTask:
    key: str
    alert_id: Optional[str]
    delay_seconds: float
    task: asyncio.Task


class TaskScheduler:
    """Runs delayed actions as asyncio tasks, keyed for cancellation.

    Scheduling an existing key replaces the pending task. Tasks can also be
    cancelled in bulk by alert id.

    Example:
        scheduler = TaskScheduler()
        scheduler.schedule("escalate:alert_1", 1800, escalate, alert_id="alert_1")
        scheduler.cancel_alert("alert_1")
    """

    def __init__(self) -> None:
        self._tasks: dict[str, ScheduledTask] = {}
        self._by_alert: dict[str, set[str]] = defaultdict(set)

    def schedule(
        self,
        key: str,
        delay_seconds: float,
        action: Action,
        alert_id: Optional[str] = None,
    ) -> ScheduledTask:
        """Run ``action`` after ``delay_seconds``.

        Must be called from a running event loop.
        """
        self.cancel(key)
        task = asyncio.create_task(self._run(key, max(delay_seconds, 0.0), action))
        entry = ScheduledTask(key=key, alert_id=alert_id, delay_seconds=delay_seconds, task=task)
        self._tasks[key] = entry
        if alert_id is not None:
            self._by_alert[alert_id].add(key)
        logger.debug("Scheduled %s in %.1fs", key, delay_seconds)
        return entry

    async def _run(self, key: str, delay_seconds: float, action: Action) -> None:
        try:
            await asyncio.sleep(delay_seconds)
            await action()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled task %s failed", key)
        finally:
            self._forget(key, asyncio.current_task())

    def _forget(self, key: str, task: Optional[asyncio.Task]) -> None:
        entry = self._tasks.get(key)
        if entry is None or entry.task is not task:
            return
        del self._tasks[key]
        if entry.alert_id is not None:
            keys = self._by_alert.get(entry.alert_id)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._by_alert[entry.alert_id]

    def cancel(self, key: str) -> bool:
        """Cancel a pending task. Unknown keys are ignored."""
        entry = self._tasks.get(key)
        if entry is None:
            return False
        self._forget(key, entry.task)
        entry.task.cancel()
        logger.debug("Cancelled %s", key)
        return True

    def cancel_alert(self, alert_id: str) -> int:
        """Cancel every pending task registered for an alert."""
        keys = list(self._by_alert.get(alert_id, ()))
        return sum(1 for key in keys if self.cancel(key))

    def pending(self, alert_id: Optional[str] = None) -> list[str]:
        """Keys of tasks that have not run yet."""
        if alert_id is not None:
            return sorted(self._by_alert.get(alert_id, ()))
        return sorted(self._tasks)

    async def shutdown(self) -> None:
        """Cancel everything and wait for the tasks to unwind."""
        tasks = [entry.task for entry in self._tasks.values()]
        for task in tasks:
            task.cancel()
        self._tasks.clear()
        self._by_alert.clear()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
