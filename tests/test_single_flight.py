import threading
from typing import Any, Callable, Dict, List

import pytest

from conftest import wait_until
from timetable_cache.core import errors
from timetable_cache.core.db import dispose_db, init_db
from timetable_cache.timetable.backends.base import UpstreamError
from timetable_cache.timetable.ranges import normalize_range

START, END = "2026-03-09", "2026-03-13"

LESSONS = [{"id": 1, "date": 20260310, "su": [{"id": 1, "name": "Math"}]}]


@pytest.fixture()
def db(tmp_path):
    # Threads need their own connections; the shared in-memory connection is not safe for concurrent sessions
    dispose_db()
    init_db(db_url=f"sqlite:///{tmp_path / 'timetable.db'}")
    try:
        yield
    finally:
        dispose_db()


def run_concurrently(client, calls: List[Callable[[], Any]], ready: Callable[[], bool]) -> List[Dict[str, Any]]:
    """
    Start the first call and let it block at login, start the rest, open the login gate once
    ready() holds. Returns {"result": ...} or {"error": ...} per call.
    """
    outcomes: List[Dict[str, Any]] = [{} for _ in calls]

    def target(i, call):
        try:
            outcomes[i]["result"] = call()
        except Exception as e:
            outcomes[i]["error"] = e

    threads = [threading.Thread(target=target, args=(i, call)) for i, call in enumerate(calls)]
    threads[0].start()
    wait_until(lambda: "login" in client.call_names())
    for thread in threads[1:]:
        thread.start()
    try:
        wait_until(ready)
    finally:
        client.login_gate.set()
        for thread in threads:
            thread.join(5)
    return outcomes


@pytest.fixture()
def alice(factory):
    client = factory.client_for("alice")
    client.lessons = LESSONS
    client.class_lessons = [{"id": 7, "date": 20260310}]
    client.own_classes = [{"id": 5, "name": "5a"}]
    client.login_gate = threading.Event()
    return client


def test_concurrent_user_misses_share_one_fetch(orchestrator, factory, alice, context):
    fetch = lambda: orchestrator.fetch_subject_range("u1", "u1", START, END)

    outcomes = run_concurrently(alice, [fetch, fetch], lambda: context.in_flight.waiting() == 1)

    responses = [o["result"] for o in outcomes]
    assert [r.cached for r in responses] == [False, False]
    assert responses[0].payload == responses[1].payload == LESSONS
    assert factory.created == ["alice"]
    assert len(orchestrator.user_store.list_records("u1")) == 1
    assert context.in_flight.pending() == 0


def test_without_single_flight_each_caller_fetches_and_inserts(orchestrator, settings, factory, alice):
    orchestrator.apply_settings(settings.model_copy(update={"single_flight": False}))
    fetch = lambda: orchestrator.fetch_subject_range("u1", "u1", START, END)

    outcomes = run_concurrently(alice, [fetch, fetch], lambda: alice.call_names().count("login") == 2)

    assert all("result" in o for o in outcomes)
    assert factory.created == ["alice", "alice"]
    assert len(orchestrator.user_store.list_records("u1")) == 2


def test_concurrent_class_misses_share_one_fetch(orchestrator, factory, alice, context):
    fetch = lambda: orchestrator.fetch_class_range("u1", 5, START, END)

    outcomes = run_concurrently(alice, [fetch, fetch], lambda: context.in_flight.waiting() == 1)

    assert [o["result"].payload for o in outcomes] == [[{"id": 7, "date": 20260310}]] * 2
    assert factory.created == ["alice"]
    assert len(orchestrator.class_store.list_records(5)) == 1


def test_joined_class_caller_also_gets_stale_fallback(orchestrator, alice, context, utc_clock):
    range_start, range_end = normalize_range(START, END)
    orchestrator.class_store.insert(5, range_start, range_end, [{"id": 1, "old": True}])
    utc_clock.advance(days=1)
    alice.lessons_error = UpstreamError("upstream down")
    fetch = lambda: orchestrator.fetch_class_range("u1", None, START, END)

    outcomes = run_concurrently(alice, [fetch, fetch], lambda: context.in_flight.waiting() == 1)

    for outcome in outcomes:
        assert "error" not in outcome, outcome.get("error")
        response = outcome["result"]
        assert response.stale is True
        assert response.payload == [{"id": 1, "old": True}]
        assert response.error_code == errors.UNTIS_FETCH_FAILED


def test_joined_class_caller_without_snapshot_gets_the_shared_error(orchestrator, alice, context):
    alice.lessons_error = UpstreamError("upstream down")
    fetch = lambda: orchestrator.fetch_class_range("u1", None, START, END)

    outcomes = run_concurrently(alice, [fetch, fetch], lambda: context.in_flight.waiting() == 1)

    assert [o["error"].code for o in outcomes] == [errors.UNTIS_FETCH_FAILED] * 2
