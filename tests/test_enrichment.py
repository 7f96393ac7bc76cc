from datetime import datetime
from types import SimpleNamespace

from timetable_cache.timetable.enrichment import enrich_from_store, enrich_lessons
from timetable_cache.timetable.records import store_exams, store_homework


def homework(untis_id=1, lesson_id=None, date=20260311, subject="Math"):
    return SimpleNamespace(
        untis_id=untis_id,
        lesson_id=lesson_id,
        date=date,
        subject_id=0,
        subject=subject,
        text="Exercises",
        remark=None,
        completed=False,
    )


def exam(untis_id=1, date=20260311, subject="Math"):
    return SimpleNamespace(
        untis_id=untis_id,
        date=date,
        start_time=800,
        end_time=845,
        subject_id=None,
        subject=subject,
        name="Test",
        text=None,
        teachers=["SMI"],
        rooms=None,
    )


def lesson(lesson_id, date, subject):
    return {"id": lesson_id, "date": date, "su": [{"id": 1, "name": subject}]}


def test_id_match_wins_over_subject_mismatch():
    [enriched] = enrich_lessons([lesson(42, 20260309, "English")], [homework(lesson_id=42, subject="Math")], [])
    assert enriched["homework"][0]["id"] == 1


def test_alternate_lesson_id_fields_match():
    item = {"lsnumber": 77, "date": 20260309, "su": [{"name": "Art"}]}
    [enriched] = enrich_lessons([item], [homework(lesson_id=77, subject="Math", date=20260601)], [])
    assert len(enriched["homework"]) == 1


def test_subject_and_date_window_fallback():
    hw_near = homework(untis_id=1, date=20260312)
    hw_far = homework(untis_id=2, date=20260319)
    [enriched] = enrich_lessons([lesson(5, 20260309, " math ")], [hw_near, hw_far], [])
    assert [h["id"] for h in enriched["homework"]] == [1]


def test_exam_requires_exact_date_and_subject():
    lessons = [lesson(1, 20260311, "Math"), lesson(2, 20260311, "math"), lesson(3, 20260312, "Math")]
    enriched = enrich_lessons(lessons, [], [exam()])
    assert enriched[0]["exams"][0]["teachers"] == ["SMI"]
    assert "exams" not in enriched[1]
    assert "exams" not in enriched[2]


def test_empty_matches_leave_no_keys_and_input_is_untouched():
    raw = lesson(1, 20260309, "Math")
    [enriched] = enrich_lessons([raw], [homework(subject="Biology")], [exam(subject="Biology")])
    assert "homework" not in enriched
    assert "exams" not in enriched
    assert enriched == raw
    assert enriched is not raw


def test_enrich_from_store_uses_window(db):
    store_homework(
        "u1",
        [
            {"id": 10, "lessonId": 900, "dueDate": 20260311, "text": "Read"},
            {"id": 11, "lessonId": 900, "dueDate": 20260420, "text": "Later"},
        ],
        {900: "Physics"},
    )
    store_exams("u1", [{"id": 20, "date": 20260311, "subject": {"name": "Physics"}, "name": "Quiz"}])

    enriched = enrich_from_store(
        "u1",
        [lesson(3, 20260311, "Physics")],
        datetime(2026, 3, 9),
        datetime(2026, 3, 13, 23, 59, 59, 999000),
    )
    assert [h["id"] for h in enriched[0]["homework"]] == [10]
    assert enriched[0]["homework"][0]["subject"]["name"] == "Physics"
    assert enriched[0]["exams"][0]["name"] == "Quiz"
