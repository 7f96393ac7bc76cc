"""
Service layer: append-only timetable snapshots in the DB.
One CacheStore per namespace (user timetables, class timetables); records are never updated,
only inserted here and deleted by the retention pruner.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Type

from sqlalchemy import select

from timetable_cache.core.context import utc_now
from timetable_cache.core.db import session_scope
from timetable_cache.timetable.models import ClassTimetableRecord, TimetableRecord

logger = logging.getLogger(__name__)


def bound_clause(column, value: Optional[datetime]):
    """Nullable-aware equality: a null bound only matches a null bound."""
    if value is None:
        return column.is_(None)
    return column == value


class CacheStore:
    """Append-only snapshot store keyed by (subject key, range_start, range_end)."""

    def __init__(self, model: Type, key_attr: str, clock: Optional[Callable[[], datetime]] = None):
        self.model = model
        self.key_attr = key_attr
        self.clock = clock or utc_now

    @property
    def key_column(self):
        return getattr(self.model, self.key_attr)

    def _range_where(self, subject_key: Any, range_start: Optional[datetime], range_end: Optional[datetime]):
        return (
            self.key_column == subject_key,
            bound_clause(self.model.range_start, range_start),
            bound_clause(self.model.range_end, range_end),
        )

    def lookup_fresh(
        self,
        subject_key: Any,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
        ttl_seconds: float,
    ):
        """Newest record with exactly these bounds created within ttl_seconds of now, or None."""
        since = self.clock() - timedelta(seconds=ttl_seconds)
        with session_scope() as session:
            return (
                session.execute(
                    select(self.model)
                    .where(*self._range_where(subject_key, range_start, range_end))
                    .where(self.model.created_at > since)
                    .order_by(self.model.created_at.desc(), self.model.id.desc())
                    .limit(1)
                )
                .scalars().first()
            )

    def lookup_latest_or_fallback(
        self,
        subject_key: Any,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
    ):
        """
        Newest record for these bounds regardless of age; when none exists, the newest record
        for the subject under any bounds. Only for error fallback: the result may be arbitrarily stale.
        """
        where = [self.key_column == subject_key]
        if range_start is not None or range_end is not None:
            # A single given bound narrows on that bound only
            if range_start is not None:
                where.append(self.model.range_start == range_start)
            if range_end is not None:
                where.append(self.model.range_end == range_end)
        else:
            where.append(self.model.range_start.is_(None))
            where.append(self.model.range_end.is_(None))

        with session_scope() as session:
            record = (
                session.execute(
                    select(self.model)
                    .where(*where)
                    .order_by(self.model.created_at.desc(), self.model.id.desc())
                    .limit(1)
                )
                .scalars().first()
            )
            if record is None:
                record = (
                    session.execute(
                        select(self.model)
                        .where(self.key_column == subject_key)
                        .order_by(self.model.created_at.desc(), self.model.id.desc())
                        .limit(1)
                    )
                    .scalars().first()
                )
            return record

    def insert(
        self,
        subject_key: Any,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
        payload: List[Any],
    ):
        """Append a new immutable snapshot and return it with its created_at."""
        record = self.model(
            range_start=range_start,
            range_end=range_end,
            payload=payload,
            created_at=self.clock(),
        )
        setattr(record, self.key_attr, subject_key)
        with session_scope() as session:
            session.add(record)
            session.flush()
        logger.debug(
            f"Stored {self.model.__tablename__} snapshot for {subject_key} "
            f"[{range_start} .. {range_end}] with {len(payload)} lesson(s)"
        )
        return record

    def list_records(self, subject_key: Any) -> List[Any]:
        """All snapshots for a subject, newest first."""
        with session_scope() as session:
            return list(
                session.execute(
                    select(self.model)
                    .where(self.key_column == subject_key)
                    .order_by(self.model.created_at.desc(), self.model.id.desc())
                ).scalars().all()
            )


def user_cache_store(clock: Optional[Callable[[], datetime]] = None) -> CacheStore:
    return CacheStore(TimetableRecord, "owner_id", clock=clock)


def class_cache_store(clock: Optional[Callable[[], datetime]] = None) -> CacheStore:
    return CacheStore(ClassTimetableRecord, "class_id", clock=clock)
