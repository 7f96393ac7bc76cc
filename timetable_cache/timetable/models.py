"""
SQLAlchemy models for the timetable cache.
- TimetableRecord / ClassTimetableRecord: append-only snapshots of lessons per (subject, range).
- HomeworkRecord / ExamRecord: upstream items upserted per (owner, upstream id).
- Account: a subject with its upstream username and stored (encrypted) secret.
"""
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

from timetable_cache.core.context import utc_now
from timetable_cache.core.db import Base


class Account(Base):
    """A user whose timetable is fetched upstream. untis_secret is the encrypted password (null = none on file)."""
    __tablename__ = "accounts"

    id = Column(String(64), primary_key=True)
    username = Column(String(255), nullable=False, index=True)
    untis_secret = Column(Text, nullable=True)
    untis_secret_key_version = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)


class TimetableRecord(Base):
    """One fetched snapshot of a user's lessons. Both range bounds null = unscoped "today" snapshot."""
    __tablename__ = "timetables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    range_start = Column(DateTime(timezone=False), nullable=True)
    range_end = Column(DateTime(timezone=False), nullable=True)
    payload = Column(JSON, nullable=False)  # list of enriched lesson dicts
    created_at = Column(DateTime(timezone=False), nullable=False, index=True)


class ClassTimetableRecord(Base):
    """One fetched snapshot of a class's lessons; separate namespace from user snapshots."""
    __tablename__ = "class_timetables"

    id = Column(Integer, primary_key=True, autoincrement=True)
    class_id = Column(Integer, nullable=False, index=True)
    range_start = Column(DateTime(timezone=False), nullable=True)
    range_end = Column(DateTime(timezone=False), nullable=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=False), nullable=False, index=True)


class HomeworkRecord(Base):
    """One upstream homework item. date is the due date as a YYYYMMDD integer."""
    __tablename__ = "homework"
    __table_args__ = (UniqueConstraint("owner_id", "untis_id", name="uq_homework_owner_untis"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    untis_id = Column(Integer, nullable=False)
    lesson_id = Column(Integer, nullable=True)
    date = Column(Integer, nullable=False, index=True)
    subject_id = Column(Integer, nullable=True)
    subject = Column(String(255), nullable=False, default="")
    text = Column(Text, nullable=False, default="")
    remark = Column(Text, nullable=True)
    completed = Column(Boolean, nullable=False, default=False)
    fetched_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)


class ExamRecord(Base):
    """One upstream exam. date is YYYYMMDD, start/end times are HHMM integers as sent upstream."""
    __tablename__ = "exams"
    __table_args__ = (UniqueConstraint("owner_id", "untis_id", name="uq_exam_owner_untis"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, index=True)
    untis_id = Column(Integer, nullable=False)
    date = Column(Integer, nullable=False, index=True)
    start_time = Column(Integer, nullable=True)
    end_time = Column(Integer, nullable=True)
    subject_id = Column(Integer, nullable=True)
    subject = Column(String(255), nullable=False, default="")
    name = Column(String(255), nullable=False, default="")
    text = Column(Text, nullable=True)
    teachers = Column(JSON, nullable=True)
    rooms = Column(JSON, nullable=True)
    fetched_at = Column(DateTime(timezone=False), default=utc_now, nullable=False)
