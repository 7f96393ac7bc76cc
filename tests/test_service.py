from datetime import datetime, timedelta

import pytest

from conftest import FrozenClock
from timetable_cache.timetable.service import class_cache_store, user_cache_store

WEEK_START = datetime(2026, 3, 9)
WEEK_END = datetime(2026, 3, 15, 23, 59, 59, 999000)


@pytest.fixture()
def clock():
    return FrozenClock(datetime(2026, 3, 10, 8, 0))


@pytest.fixture()
def store(db, clock):
    return user_cache_store(clock=clock)


def test_lookup_fresh_returns_newest_within_ttl(store, clock):
    store.insert("u1", WEEK_START, WEEK_END, [{"id": 1}])
    clock.advance(minutes=2)
    store.insert("u1", WEEK_START, WEEK_END, [{"id": 2}])
    clock.advance(minutes=1)

    record = store.lookup_fresh("u1", WEEK_START, WEEK_END, 300)
    assert record.payload == [{"id": 2}]


def test_lookup_fresh_ignores_records_older_than_ttl(store, clock):
    store.insert("u1", WEEK_START, WEEK_END, [{"id": 1}])
    clock.advance(minutes=5, seconds=1)
    assert store.lookup_fresh("u1", WEEK_START, WEEK_END, 300) is None


def test_lookup_fresh_requires_exact_bounds(store):
    store.insert("u1", WEEK_START, WEEK_END, [])
    assert store.lookup_fresh("u1", WEEK_START, WEEK_END - timedelta(days=1), 300) is None
    assert store.lookup_fresh("u2", WEEK_START, WEEK_END, 300) is None


def test_insert_is_append_only(store, clock):
    for i in range(3):
        store.insert("u1", WEEK_START, WEEK_END, [{"n": i}])
        clock.advance(seconds=1)
    records = store.list_records("u1")
    assert len(records) == 3
    assert [r.payload for r in records] == [[{"n": 2}], [{"n": 1}], [{"n": 0}]]


def test_fallback_prefers_exact_bounds_regardless_of_age(store, clock):
    store.insert("u1", WEEK_START, WEEK_END, [{"week": "this"}])
    clock.advance(days=3)
    store.insert("u1", WEEK_START + timedelta(days=7), WEEK_END + timedelta(days=7), [{"week": "next"}])

    record = store.lookup_latest_or_fallback("u1", WEEK_START, WEEK_END)
    assert record.payload == [{"week": "this"}]


def test_fallback_uses_any_range_when_no_exact_match(store, clock):
    store.insert("u1", WEEK_START, WEEK_END, [{"week": "this"}])
    record = store.lookup_latest_or_fallback("u1", WEEK_START - timedelta(days=7), WEEK_END - timedelta(days=7))
    assert record.payload == [{"week": "this"}]
    assert store.lookup_latest_or_fallback("someone-else", WEEK_START, WEEK_END) is None


def test_unscoped_records_match_null_bounds(store):
    store.insert("u1", None, None, [{"today": True}])
    store.insert("u1", WEEK_START, WEEK_END, [{"week": True}])
    assert store.lookup_fresh("u1", None, None, 300).payload == [{"today": True}]


def test_class_store_is_a_separate_namespace(db, clock):
    users = user_cache_store(clock=clock)
    classes = class_cache_store(clock=clock)
    classes.insert(10, WEEK_START, WEEK_END, [{"class": True}])
    assert classes.lookup_fresh(10, WEEK_START, WEEK_END, 300).class_id == 10
    assert users.list_records("10") == []
