"""
Service layer for homework and exam items: upsert per (owner, upstream id) and load by date window.
Single-item failures are logged and skipped so one bad row never loses the rest of a fetch.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import select

from timetable_cache.core.context import utc_now
from timetable_cache.core.db import session_scope
from timetable_cache.timetable.models import ExamRecord, HomeworkRecord
from timetable_cache.timetable.ranges import to_date_int

logger = logging.getLogger(__name__)


def _subject_of(item: Dict[str, Any]) -> Dict[str, Any]:
    subject = item.get("subject")
    if isinstance(subject, dict):
        return subject
    if isinstance(subject, str):
        return {"name": subject}
    return {}


def _int_or_none(value: Any) -> Optional[int]:
    return value if isinstance(value, int) and not isinstance(value, bool) else None


def store_homework(
    owner_id: str,
    homework: List[Dict[str, Any]],
    subject_by_lesson_id: Optional[Mapping[int, str]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """Upsert homework items; the subject comes from the lesson map first, then the item itself."""
    subject_by_lesson_id = subject_by_lesson_id or {}
    stored = 0
    for hw in homework:
        try:
            lesson_id = _int_or_none(hw.get("lessonId"))
            subject = _subject_of(hw)
            subject_name = (
                (lesson_id is not None and subject_by_lesson_id.get(lesson_id))
                or subject.get("name")
                or ""
            )
            due = hw.get("dueDate") if hw.get("dueDate") is not None else hw.get("date")
            values = dict(
                lesson_id=lesson_id,
                date=int(due),
                subject_id=_int_or_none(subject.get("id")) or 0,
                subject=subject_name,
                text=hw.get("text") or "",
                remark=hw.get("remark"),
                completed=bool(hw.get("completed", False)),
                fetched_at=clock(),
            )
            with session_scope() as session:
                row = session.execute(
                    select(HomeworkRecord).where(
                        HomeworkRecord.owner_id == owner_id,
                        HomeworkRecord.untis_id == hw["id"],
                    )
                ).scalars().first()
                if row:
                    for key, value in values.items():
                        setattr(row, key, value)
                else:
                    session.add(HomeworkRecord(owner_id=owner_id, untis_id=hw["id"], **values))
            stored += 1
        except Exception as e:
            logger.warning(f"Failed to store homework {hw.get('id') if isinstance(hw, dict) else hw}: {e}")
    return stored


def store_exams(owner_id: str, exams: List[Dict[str, Any]], clock: Callable[[], datetime] = utc_now) -> int:
    stored = 0
    for exam in exams:
        try:
            subject = _subject_of(exam)
            values = dict(
                date=int(exam["date"]),
                start_time=_int_or_none(exam.get("startTime")),
                end_time=_int_or_none(exam.get("endTime")),
                subject_id=_int_or_none(subject.get("id")),
                subject=subject.get("name") or "",
                name=exam.get("name") or "",
                text=exam.get("text"),
                teachers=exam.get("teachers"),
                rooms=exam.get("rooms"),
                fetched_at=clock(),
            )
            with session_scope() as session:
                row = session.execute(
                    select(ExamRecord).where(
                        ExamRecord.owner_id == owner_id,
                        ExamRecord.untis_id == exam["id"],
                    )
                ).scalars().first()
                if row:
                    for key, value in values.items():
                        setattr(row, key, value)
                else:
                    session.add(ExamRecord(owner_id=owner_id, untis_id=exam["id"], **values))
            stored += 1
        except Exception as e:
            logger.warning(f"Failed to store exam {exam.get('id') if isinstance(exam, dict) else exam}: {e}")
    return stored


def load_homework_and_exams(
    owner_id: str,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> Tuple[List[HomeworkRecord], List[ExamRecord]]:
    """Rows for the owner whose date falls in [range_start, range_end] (as YYYYMMDD), or all rows without a window."""
    with session_scope() as session:
        hw_stmt = select(HomeworkRecord).where(HomeworkRecord.owner_id == owner_id)
        exam_stmt = select(ExamRecord).where(ExamRecord.owner_id == owner_id)
        if range_start is not None and range_end is not None:
            lo, hi = to_date_int(range_start), to_date_int(range_end)
            hw_stmt = hw_stmt.where(HomeworkRecord.date >= lo, HomeworkRecord.date <= hi)
            exam_stmt = exam_stmt.where(ExamRecord.date >= lo, ExamRecord.date <= hi)
        homework = list(session.execute(hw_stmt.order_by(HomeworkRecord.date)).scalars().all())
        exams = list(session.execute(exam_stmt.order_by(ExamRecord.date)).scalars().all())
        return homework, exams
