import pytest

from timetable_cache.core import errors
from timetable_cache.timetable.backends.base import UpstreamAuthError, UpstreamError, UpstreamNoResultError

HOLIDAYS = [
    {"id": 1, "name": "Ostern", "longName": "Osterferien", "startDate": 20260330, "endDate": 20260410},
    {"id": 2, "name": "Sommer", "longName": "Sommerferien", "startDate": 20260720, "endDate": 20260828},
]


@pytest.fixture()
def alice(factory):
    client = factory.client_for("alice")
    client.holidays = HOLIDAYS
    return client


def test_holidays_are_cached_per_user(orchestrator, alice, factory, utc_clock):
    assert orchestrator.get_holidays("u1") == HOLIDAYS
    utc_clock.advance(hours=5)
    assert orchestrator.get_holidays("u1") == HOLIDAYS
    assert factory.created == ["alice"]
    assert alice.call_names() == ["login", "holidays", "logout"]


def test_holidays_refetched_after_six_hours(orchestrator, alice, factory, utc_clock):
    orchestrator.get_holidays("u1")
    utc_clock.advance(hours=6)
    alice.holidays = HOLIDAYS[:1]
    assert orchestrator.get_holidays("u1") == HOLIDAYS[:1]
    assert factory.created == ["alice", "alice"]


def test_expired_holidays_served_when_upstream_fails(orchestrator, alice, utc_clock):
    orchestrator.get_holidays("u1")
    utc_clock.advance(days=1)
    alice.holidays_error = UpstreamError("HTTP 503")
    assert orchestrator.get_holidays("u1") == HOLIDAYS


def test_expired_holidays_served_when_login_fails(orchestrator, alice, utc_clock):
    orchestrator.get_holidays("u1")
    utc_clock.advance(days=1)
    alice.login_error = UpstreamError("connection refused")
    assert orchestrator.get_holidays("u1") == HOLIDAYS


def test_holidays_without_cache_fail_when_upstream_fails(orchestrator, alice):
    alice.holidays_error = UpstreamError("HTTP 503")
    with pytest.raises(errors.AppError) as excinfo:
        orchestrator.get_holidays("u1")
    assert excinfo.value.code == errors.UNTIS_FETCH_FAILED
    assert excinfo.value.status == 502


def test_bad_credentials_are_not_masked_by_cached_holidays(orchestrator, alice, utc_clock):
    orchestrator.get_holidays("u1")
    utc_clock.advance(days=1)
    alice.login_error = UpstreamAuthError("bad credentials")
    with pytest.raises(errors.AppError) as excinfo:
        orchestrator.get_holidays("u1")
    assert excinfo.value.code == errors.BAD_CREDENTIALS


def test_no_holidays_is_an_empty_cached_answer(orchestrator, alice, factory):
    alice.holidays_error = UpstreamNoResultError("no result")
    assert orchestrator.get_holidays("u1") == []
    assert orchestrator.get_holidays("u1") == []
    assert factory.created == ["alice"]


def test_holidays_for_unknown_user(orchestrator):
    with pytest.raises(errors.NotFoundError):
        orchestrator.get_holidays("nobody")


def test_holidays_ttl_follows_settings(orchestrator, settings, alice, factory, utc_clock):
    orchestrator.apply_settings(settings.model_copy(update={"holidays_ttl_seconds": 60}))
    orchestrator.get_holidays("u1")
    utc_clock.advance(seconds=61)
    orchestrator.get_holidays("u1")
    assert factory.created == ["alice", "alice"]
