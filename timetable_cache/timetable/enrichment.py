"""
Attach stored homework and exams to raw upstream lessons.

Homework matches a lesson when one of the lesson's id fields equals the homework's lesson id,
or, failing that, when the subject names agree (case-insensitive, trimmed) and the due date is
within HOMEWORK_DAY_RANGE days of the lesson date. Exams match on exact date and exact subject name.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from timetable_cache.timetable.ranges import date_ints_within
from timetable_cache.timetable.records import load_homework_and_exams

HOMEWORK_DAY_RANGE = 7
LESSON_ID_FIELDS = ("id", "lsnumber", "lsNumber", "ls", "lessonId")


def lesson_subject_name(lesson: Dict[str, Any]) -> Optional[str]:
    subjects = lesson.get("su")
    if isinstance(subjects, list) and subjects and isinstance(subjects[0], dict):
        return subjects[0].get("name")
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def lesson_matches_homework_id(hw, lesson: Dict[str, Any]) -> bool:
    if hw.lesson_id is None:
        return False
    return any(
        _is_number(lesson.get(field)) and lesson.get(field) == hw.lesson_id
        for field in LESSON_ID_FIELDS
    )


def subjects_match(hw_subject: Optional[str], lesson_subject: Optional[str]) -> bool:
    if not hw_subject or not lesson_subject:
        return False
    return hw_subject.strip().lower() == lesson_subject.strip().lower()


def homework_matches(hw, lesson: Dict[str, Any]) -> bool:
    if lesson_matches_homework_id(hw, lesson):
        return True
    lesson_date = lesson.get("date")
    if not _is_number(lesson_date):
        return False
    return subjects_match(hw.subject, lesson_subject_name(lesson)) and date_ints_within(
        hw.date, int(lesson_date), HOMEWORK_DAY_RANGE
    )


def exam_matches(exam, lesson: Dict[str, Any]) -> bool:
    return exam.date == lesson.get("date") and exam.subject == lesson_subject_name(lesson)


def homework_projection(hw) -> Dict[str, Any]:
    return {
        "id": hw.untis_id,
        "lessonId": hw.lesson_id,
        "date": hw.date,
        "subject": {"id": hw.subject_id, "name": hw.subject},
        "text": hw.text,
        "remark": hw.remark,
        "completed": hw.completed,
    }


def exam_projection(exam) -> Dict[str, Any]:
    projection = {
        "id": exam.untis_id,
        "date": exam.date,
        "startTime": exam.start_time,
        "endTime": exam.end_time,
        "subject": {"id": exam.subject_id, "name": exam.subject},
        "name": exam.name,
        "text": exam.text,
    }
    if exam.teachers is not None:
        projection["teachers"] = exam.teachers
    if exam.rooms is not None:
        projection["rooms"] = exam.rooms
    return projection


def enrich_lessons(
    lessons: Sequence[Dict[str, Any]],
    homework: Sequence[Any],
    exams: Sequence[Any],
) -> List[Dict[str, Any]]:
    """
    Return copies of the lessons with "homework" / "exams" lists added.
    A key is only present when at least one item matched (never an empty list).
    """
    enriched = []
    for lesson in lessons:
        item = dict(lesson)
        item.pop("homework", None)
        item.pop("exams", None)
        matched_hw = [homework_projection(hw) for hw in homework if homework_matches(hw, lesson)]
        matched_exams = [exam_projection(exam) for exam in exams if exam_matches(exam, lesson)]
        if matched_hw:
            item["homework"] = matched_hw
        if matched_exams:
            item["exams"] = matched_exams
        enriched.append(item)
    return enriched


def enrich_from_store(
    owner_id: str,
    lessons: Sequence[Dict[str, Any]],
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Load the owner's stored homework/exams for the window and enrich the lessons with them."""
    if not isinstance(lessons, (list, tuple)):
        return []
    homework, exams = load_homework_and_exams(owner_id, range_start, range_end)
    return enrich_lessons(lessons, homework, exams)
