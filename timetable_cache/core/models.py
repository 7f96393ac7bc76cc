"""
Core DB models: task schedule (last/next run of the periodic tasks, for observability).
"""
from typing import Any, Dict, List

from sqlalchemy import Column, String, DateTime, Text, JSON, select

from timetable_cache.core.context import utc_now
from timetable_cache.core.db import Base, session_scope


class TaskSchedule(Base):
    """Per-task schedule row: next_run_at, last_run_at and last_error of a periodic task."""
    __tablename__ = "task_schedules"

    task_name = Column(String(255), primary_key=True)
    schedule_type = Column(String(64), nullable=False)  # INTERVAL_SECONDS
    schedule_config = Column(JSON, nullable=True)  # e.g. {"interval_seconds": 21600}
    next_run_at = Column(DateTime(timezone=False), nullable=True)
    last_run_at = Column(DateTime(timezone=False), nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=False), default=utc_now, onupdate=utc_now, nullable=False)


def get_all_task_schedules() -> List[Dict[str, Any]]:
    """Return all TaskSchedule rows as list of dicts (for API). Datetimes are naive UTC."""
    rows = get_all_task_schedule_records()
    return [
        {
            "task_name": r.task_name,
            "schedule_type": r.schedule_type,
            "schedule_config": r.schedule_config,
            "next_run_at": r.next_run_at,
            "last_run_at": r.last_run_at,
            "last_error": r.last_error,
        }
        for r in rows
    ]


def get_all_task_schedule_records() -> List[TaskSchedule]:
    with session_scope() as session:
        return list(session.execute(select(TaskSchedule)).scalars().all())
