import threading
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import pytest

from timetable_cache.core.context import SchedulerContext
from timetable_cache.core.db import dispose_db, init_db
from timetable_cache.timetable.backends.base import UpstreamClient
from timetable_cache.timetable.credentials import CredentialStore
from timetable_cache.timetable.orchestrator import TimetableOrchestrator
from timetable_cache.timetable.settings import TimetableSettings

# Tuesday of the ISO week starting Monday 2026-03-09
LOCAL_NOW = datetime(2026, 3, 10, 9, 0)
UTC_NOW = datetime(2026, 3, 10, 8, 0)


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingRunner:
    """Background runner that records jobs instead of running them."""

    def __init__(self):
        self.jobs: List[tuple] = []

    def submit(self, name: str, callback: Callable, *args: Any, **kwargs: Any) -> None:
        self.jobs.append((name, callback, args, kwargs))

    def names(self) -> List[str]:
        return [job[0] for job in self.jobs]

    def run_all(self) -> None:
        jobs, self.jobs = self.jobs, []
        for _name, callback, args, kwargs in jobs:
            callback(*args, **kwargs)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


class FakeClient(UpstreamClient):
    """Scriptable upstream session. Set *_error attributes to make a call raise."""

    def __init__(self, username: str = "", password: str = ""):
        self.username = username
        self.password = password
        self.lessons: List[Dict[str, Any]] = []
        self.today_lessons: List[Dict[str, Any]] = []
        self.homework: Dict[str, Any] = {"homeworks": [], "lessons": []}
        self.exams: List[Dict[str, Any]] = []
        self.own_classes: List[Dict[str, Any]] = []
        self.all_classes: List[Dict[str, Any]] = []
        self.class_lessons: List[Dict[str, Any]] = []
        self.holidays: List[Dict[str, Any]] = []
        self.login_error: Optional[Exception] = None
        self.lessons_error: Optional[Exception] = None
        self.homework_error: Optional[Exception] = None
        self.exams_error: Optional[Exception] = None
        self.all_classes_error: Optional[Exception] = None
        self.holidays_error: Optional[Exception] = None
        self.calls: List[tuple] = []
        # When set, login() blocks until the event fires so tests can line up concurrent callers
        self.login_gate: Optional[threading.Event] = None

    def _call(self, name: str, *args, error: Optional[Exception] = None):
        self.calls.append((name,) + args)
        if error is not None:
            raise error

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def login(self) -> None:
        self.calls.append(("login",))
        if self.login_gate is not None:
            assert self.login_gate.wait(5), "login gate never opened"
        if self.login_error is not None:
            raise self.login_error

    def logout(self) -> None:
        self._call("logout")

    def fetch_lessons_for_range(self, start, end):
        self._call("lessons", start, end, error=self.lessons_error)
        return self.lessons

    def fetch_lessons_for_today(self):
        self._call("today", error=self.lessons_error)
        return self.today_lessons

    def fetch_homework_for_range(self, start, end):
        self._call("homework", start, end, error=self.homework_error)
        return self.homework

    def fetch_exams_for_range(self, start, end):
        self._call("exams", start, end, error=self.exams_error)
        return self.exams

    def fetch_own_classes(self):
        self._call("own_classes")
        return self.own_classes

    def fetch_all_classes(self):
        self._call("all_classes", error=self.all_classes_error)
        return self.all_classes

    def fetch_class_timetable(self, start, end, class_id):
        self._call("class_timetable", start, end, class_id, error=self.lessons_error)
        return self.class_lessons

    def fetch_holidays(self):
        self._call("holidays", error=self.holidays_error)
        return self.holidays


class ClientFactory:
    """Hands out one shared FakeClient per username and counts sessions opened."""

    def __init__(self):
        self.clients: Dict[str, FakeClient] = {}
        self.created: List[str] = []

    def client_for(self, username: str) -> FakeClient:
        if username not in self.clients:
            self.clients[username] = FakeClient(username)
        return self.clients[username]

    def __call__(self, username: str, password: str) -> FakeClient:
        self.created.append(username)
        client = self.client_for(username)
        client.password = password
        return client


@pytest.fixture()
def db():
    dispose_db()
    init_db(db_url="sqlite://")
    try:
        yield
    finally:
        dispose_db()


@pytest.fixture()
def utc_clock() -> FrozenClock:
    return FrozenClock(UTC_NOW)


@pytest.fixture()
def local_clock() -> FrozenClock:
    return FrozenClock(LOCAL_NOW)


@pytest.fixture()
def context(utc_clock, local_clock) -> SchedulerContext:
    return SchedulerContext(clock=utc_clock, local_clock=local_clock)


@pytest.fixture()
def runner() -> RecordingRunner:
    return RecordingRunner()


@pytest.fixture()
def factory() -> ClientFactory:
    return ClientFactory()


@pytest.fixture()
def credentials(db) -> CredentialStore:
    store = CredentialStore()
    store.save_account("u1", "alice", "secret-1")
    return store


@pytest.fixture()
def settings() -> TimetableSettings:
    return TimetableSettings(exam_update_subject_delay_seconds=0)


@pytest.fixture()
def orchestrator(credentials, factory, context, runner, settings) -> TimetableOrchestrator:
    return TimetableOrchestrator(
        factory,
        credentials=credentials,
        settings=settings,
        context=context,
        runner=runner,
    )
