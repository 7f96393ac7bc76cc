"""
Base type for periodic background tasks, with last/next run bookkeeping in the DB.
Scheduling itself stays in memory (TaskManager timers); the DB row is for observability.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select

from timetable_cache.core.context import utc_now
from timetable_cache.core.db import session_scope
from timetable_cache.core.models import TaskSchedule

logger = logging.getLogger(__name__)


class TaskType:
    """Schedule kind for tasks."""
    INTERVAL_SECONDS = "interval_seconds"


def compute_next_run(
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    last_run: Optional[datetime],
) -> datetime:
    """Compute next run datetime from schedule_type, schedule_config, and last_run."""
    now = utc_now()
    if last_run is None:
        last_run = now

    if schedule_type == TaskType.INTERVAL_SECONDS and schedule_config:
        sec = int(schedule_config.get("interval_seconds", 86400))
        return last_run + timedelta(seconds=sec)

    return last_run + timedelta(days=1)


def record_task_run(
    task_name: str,
    schedule_type: str,
    schedule_config: Optional[Dict[str, Any]],
    error: Optional[str] = None,
) -> None:
    """Create or update the TaskSchedule row after a run: last_run_at, next_run_at and last_error."""
    with session_scope() as session:
        row = session.execute(
            select(TaskSchedule).where(TaskSchedule.task_name == task_name)
        ).scalars().first()
        now = utc_now()
        next_run_at = compute_next_run(schedule_type, schedule_config, now)
        if row:
            row.schedule_type = schedule_type
            row.schedule_config = schedule_config
            row.last_run_at = now
            row.next_run_at = next_run_at
            row.last_error = error
            row.updated_at = now
        else:
            session.add(TaskSchedule(
                task_name=task_name,
                schedule_type=schedule_type,
                schedule_config=schedule_config,
                next_run_at=next_run_at,
                last_run_at=now,
                last_error=error,
                created_at=now,
                updated_at=now,
            ))


class BaseTask(ABC):
    """
    Abstract base for periodic background tasks. Subclasses implement run_cycle();
    run() wraps it so a failed cycle is logged and recorded, never raised into the timer thread.
    """

    def __init__(self, task_name: str, interval_seconds: float, startup_delay_seconds: float = 0):
        self.task_name = task_name
        self.schedule_type = TaskType.INTERVAL_SECONDS
        self.schedule_config = {"interval_seconds": int(interval_seconds)}
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self.logger = logging.getLogger(self.__class__.__name__)

    def start(self, task_manager) -> None:
        """Schedule this task on the task manager; a second call while scheduled is a no-op."""
        if task_manager.is_scheduled(self.task_name):
            self.logger.debug(f"{self.task_name} already scheduled")
            return
        task_manager.schedule_task(
            self.task_name,
            self.run,
            self.startup_delay_seconds,
            one_time=False,
            interval=self.interval_seconds,
        )

    def run(self) -> None:
        error = None
        try:
            self.run_cycle()
        except Exception as e:
            self.logger.exception(f"{self.task_name} cycle failed: {e}")
            error = str(e)
        try:
            record_task_run(self.task_name, self.schedule_type, self.schedule_config, error=error)
        except Exception as e:
            self.logger.debug(f"record_task_run {self.task_name}: {e}")

    @abstractmethod
    def run_cycle(self) -> None:
        """Do one round of work."""
        pass
