"""
Fetch orchestration for user and class timetables.

Per request: normalize the range, serve a fresh cached snapshot if one exists, otherwise open an
upstream session, fetch lessons (plus homework and exams for user timetables), enrich, store a new
snapshot and answer live. When the upstream is unavailable or rejects the stored credentials, the
newest stored snapshot is served instead, flagged stale. After a live scoped fetch the adjacent
ranges are prefetched and a retention pass is triggered in the background.
"""
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional

from timetable_cache.core import errors
from timetable_cache.core.context import SchedulerContext, TtlCache
from timetable_cache.core.task_manager import BackgroundRunner
from timetable_cache.timetable.backends.base import (
    UpstreamAuthError,
    UpstreamClient,
    UpstreamNoResultError,
)
from timetable_cache.timetable.classes import (
    discover_own_classes,
    filter_classes,
    find_class_by_name,
    normalize_classes,
    resolve_permitted_class_id,
)
from timetable_cache.timetable.credentials import CredentialStore
from timetable_cache.timetable.enrichment import enrich_from_store
from timetable_cache.timetable.models import Account
from timetable_cache.timetable.pruner import RetentionPruner
from timetable_cache.timetable.ranges import day_bounds, end_of_day, normalize_range, shift_range, start_of_day
from timetable_cache.timetable.records import store_exams, store_homework
from timetable_cache.timetable.schemas import (
    FALLBACK_BAD_CREDENTIALS,
    FALLBACK_UNTIS_UNAVAILABLE,
    ClassInfo,
    TimetableResponse,
)
from timetable_cache.timetable.service import CacheStore, class_cache_store, user_cache_store
from timetable_cache.timetable.settings import TimetableSettings

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], UpstreamClient]

MIN_CLASS_QUERY_LENGTH = 2


def _fallback_reason(error: errors.AppError) -> str:
    if str(error.code or "").upper() == errors.BAD_CREDENTIALS:
        return FALLBACK_BAD_CREDENTIALS
    return FALLBACK_UNTIS_UNAVAILABLE


class TimetableOrchestrator:
    def __init__(
        self,
        client_factory: ClientFactory,
        credentials: Optional[CredentialStore] = None,
        settings: Optional[TimetableSettings] = None,
        context: Optional[SchedulerContext] = None,
        runner: Optional[Any] = None,
    ):
        self.client_factory = client_factory
        self.credentials = credentials or CredentialStore()
        self.settings = settings or TimetableSettings()
        self.context = context or SchedulerContext(
            class_list_ttl_seconds=self.settings.class_list_ttl_seconds,
            all_classes_ttl_seconds=self.settings.all_classes_ttl_seconds,
        )
        self.runner = runner or BackgroundRunner(max_workers=self.settings.background_workers)
        self.user_store: CacheStore = user_cache_store(clock=self.context.now)
        self.class_store: CacheStore = class_cache_store(clock=self.context.now)
        self.user_pruner = RetentionPruner(self.user_store, self.context)
        self.class_pruner = RetentionPruner(self.class_store, self.context)
        self.apply_settings(self.settings)

    def apply_settings(self, settings: TimetableSettings) -> None:
        """Swap in new tunables (config reload); cached state is kept."""
        self.settings = settings
        for pruner in (self.user_pruner, self.class_pruner):
            pruner.max_age_days = settings.max_age_days
            pruner.max_history_per_range = settings.max_history_per_range
            pruner.interval_seconds = settings.cleanup_interval_seconds
        self.context.own_classes.ttl_seconds = settings.class_list_ttl_seconds
        self.context.all_classes.ttl_seconds = settings.all_classes_ttl_seconds
        self.context.holidays.ttl_seconds = settings.holidays_ttl_seconds

    @contextmanager
    def upstream_session(self, account: Account) -> Iterator[UpstreamClient]:
        """
        Logged-in client for one fetch attempt. Login failures become BAD_CREDENTIALS or
        UNTIS_LOGIN_FAILED; logout is always attempted and its failures ignored.
        """
        password = self.credentials.resolve_password(account)
        client = self.client_factory(account.username, password)
        try:
            try:
                client.login()
            except UpstreamAuthError as e:
                raise errors.bad_credentials() from e
            except Exception as e:
                logger.warning(f"Untis login failed for {account.id}: {e}")
                raise errors.login_failed() from e
            yield client
        finally:
            try:
                client.logout()
            except Exception as e:
                logger.debug(f"Untis logout failed for {account.id}: {e}")

    @staticmethod
    def _fetch_or_empty(fetch: Callable[[], Any], what: str) -> Any:
        """Run one upstream fetch; "no result" is an empty answer, anything else UNTIS_FETCH_FAILED."""
        try:
            result = fetch()
        except UpstreamNoResultError:
            logger.warning(f"No result from Untis for {what}, returning empty")
            return []
        except errors.AppError:
            raise
        except Exception as e:
            logger.warning(f"Untis {what} fetch failed: {e}")
            raise errors.fetch_failed() from e
        return result if isinstance(result, list) else []

    def _single_flight(self, key: tuple, work: Callable[[], Any]) -> Any:
        if not self.settings.single_flight:
            return work()
        return self.context.in_flight.run(key, work)

    def fetch_subject_range(
        self,
        requester_id: str,
        target_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> TimetableResponse:
        logger.debug(f"Timetable request requester={requester_id} target={target_id} start={start} end={end}")
        account = self.credentials.get_account(target_id)

        range_start, range_end = normalize_range(start, end)
        if range_start is not None and range_end is not None:
            cached = self._lookup_fresh(self.user_store, account.id, range_start, range_end)
            if cached is not None:
                logger.debug(f"Timetable cache hit for {account.id} [{range_start} .. {range_end}]")
                return TimetableResponse.from_record(account.id, cached, cached=True)
        else:
            # Unscoped: day bounds for whichever field was given; none -> "today" snapshot
            range_start, range_end = day_bounds(start, end)

        try:
            record = self._fetch_user(account, range_start, range_end)
        except errors.AppError as err:
            fallback = self._fallback(self.user_store, account.id, range_start, range_end, err)
            if fallback is not None:
                return TimetableResponse.from_record(
                    account.id,
                    fallback,
                    cached=True,
                    stale=True,
                    fallback_reason=_fallback_reason(err),
                    error_code=err.code,
                    error_message=err.message,
                )
            raise

        if range_start is not None and range_end is not None:
            self._schedule_user_prefetch(account, range_start, range_end)

        return TimetableResponse.from_record(account.id, record, cached=False)

    def _fetch_user(self, account: Account, range_start: Optional[datetime], range_end: Optional[datetime]):
        key = ("user", account.id, range_start, range_end)
        return self._single_flight(key, lambda: self._fetch_and_store_user(account, range_start, range_end))

    def _fetch_and_store_user(
        self,
        account: Account,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
    ):
        scoped = range_start is not None and range_end is not None
        homework_count = 0
        exams: List[Dict[str, Any]] = []

        with self.upstream_session(account) as client:
            if scoped:
                lessons = self._fetch_or_empty(lambda: client.fetch_lessons_for_range(range_start, range_end), "lessons")
                homework_count = self._fetch_and_store_homework(client, account.id, range_start, range_end)
                exams = self._fetch_exams_quietly(client, range_start, range_end)
            else:
                lessons = self._fetch_or_empty(client.fetch_lessons_for_today, "today's lessons")

        if exams:
            try:
                store_exams(account.id, exams, clock=self.context.now)
            except Exception as e:
                logger.warning(f"Failed to store exam data for {account.id}: {e}")

        try:
            payload = enrich_from_store(account.id, lessons, range_start, range_end)
        except Exception as e:
            logger.warning(f"Enrichment failed for {account.id}, storing raw lessons: {e}")
            payload = [dict(lesson) for lesson in lessons if isinstance(lesson, dict)]

        logger.debug(
            f"Fetched {len(lessons)} lesson(s), {homework_count} homework, {len(exams)} exam(s) for {account.id}"
        )
        return self.user_store.insert(account.id, range_start, range_end, payload)

    def _fetch_and_store_homework(self, client: UpstreamClient, owner_id: str, range_start, range_end) -> int:
        """Fetch and upsert homework; failures are logged and the timetable continues without it."""
        try:
            response = client.fetch_homework_for_range(range_start, range_end)
        except Exception as e:
            logger.warning(f"Homework fetch failed for {owner_id}, continuing without homework: {e}")
            return 0
        if isinstance(response, list):
            homework, lessons = response, []
        elif isinstance(response, dict):
            homework = response.get("homeworks") or []
            lessons = response.get("lessons") or []
        else:
            return 0
        subject_by_lesson_id = {
            item["id"]: item["subject"]
            for item in lessons
            if isinstance(item, dict)
            and isinstance(item.get("id"), int)
            and isinstance(item.get("subject"), str)
        }
        if homework:
            try:
                store_homework(owner_id, homework, subject_by_lesson_id, clock=self.context.now)
            except Exception as e:
                logger.warning(f"Failed to store homework data for {owner_id}: {e}")
        return len(homework)

    @staticmethod
    def _fetch_exams_quietly(client: UpstreamClient, range_start, range_end) -> List[Dict[str, Any]]:
        try:
            exams = client.fetch_exams_for_range(range_start, range_end)
        except Exception as e:
            logger.warning(f"Exam fetch failed, continuing without exams: {e}")
            return []
        return exams if isinstance(exams, list) else []

    def _schedule_user_prefetch(self, account: Account, range_start: datetime, range_end: datetime) -> None:
        if not self.settings.prefetch:
            self.runner.submit(f"prune:{self.user_store.model.__tablename__}", self.user_pruner.tick)
            return
        offset = self.settings.prefetch_offset_days
        for days in (-offset, offset):
            s, e = shift_range(range_start, range_end, days)
            self.runner.submit(f"prefetch:user:{account.id}:{s.date()}", self._prefetch_user_range, account, s, e)
        self.runner.submit(f"prune:{self.user_store.model.__tablename__}", self.user_pruner.tick)

    def _prefetch_user_range(self, account: Account, range_start: datetime, range_end: datetime) -> None:
        try:
            if self._lookup_fresh(self.user_store, account.id, range_start, range_end) is not None:
                logger.debug(f"Prefetch skipped for {account.id} [{range_start} .. {range_end}]: fresh in cache")
                return
            self._fetch_user(account, range_start, range_end)
            logger.debug(f"Prefetched {account.id} [{range_start} .. {range_end}]")
        except Exception as e:
            logger.debug(f"Prefetch skipped for {account.id} [{range_start} .. {range_end}]: {e}")

    def update_exams_for_subject(self, subject_id: str, start: datetime, end: datetime) -> int:
        """Fetch and upsert a subject's exams for [start, end]; returns the number fetched."""
        account = self.credentials.get_account(subject_id)
        with self.upstream_session(account) as client:
            exams = self._fetch_or_empty(lambda: client.fetch_exams_for_range(start, end), "exams")
        if exams:
            store_exams(account.id, exams, clock=self.context.now)
        return len(exams)

    def fetch_class_range(
        self,
        requester_id: str,
        class_id: Optional[int] = None,
        start: Optional[str] = None,
        end: Optional[str] = None,
    ) -> TimetableResponse:
        logger.debug(f"Class timetable request requester={requester_id} class={class_id} start={start} end={end}")
        requester = self.credentials.get_account(requester_id, not_found_message="Requester not found")

        range_start, range_end = normalize_range(start, end)
        if range_start is None or range_end is None:
            today = self.context.local_now()
            range_start, range_end = start_of_day(today), end_of_day(today)

        allowed: List[ClassInfo] = self.context.own_classes.get(requester.id) or []
        resolved_id = resolve_permitted_class_id(class_id, allowed)
        if resolved_id is not None:
            cached = self._lookup_fresh(self.class_store, resolved_id, range_start, range_end)
            if cached is not None:
                return TimetableResponse.from_record(requester.id, cached, cached=True)

        state = {"class_id": resolved_id}
        try:
            record, cached = self._single_flight(
                ("class", requester.id, class_id, range_start, range_end),
                lambda: self._fetch_and_store_class(requester, class_id, range_start, range_end, state),
            )
        except errors.AppError as err:
            fallback_id = state["class_id"]
            if fallback_id is None:
                # Joined another caller's fetch: the leader resolved and cached the class list
                fallback_id = resolve_permitted_class_id(class_id, self.context.own_classes.get(requester.id) or [])
            if fallback_id is not None:
                fallback = self._fallback(self.class_store, fallback_id, range_start, range_end, err)
                if fallback is not None:
                    return TimetableResponse.from_record(
                        requester.id,
                        fallback,
                        cached=True,
                        stale=True,
                        fallback_reason=_fallback_reason(err),
                        error_code=err.code,
                        error_message=err.message,
                    )
            raise

        if not cached:
            self._schedule_class_prefetch(requester, record.class_id, range_start, range_end)
        return TimetableResponse.from_record(requester.id, record, cached=cached)

    def _fetch_and_store_class(
        self,
        requester: Account,
        requested_id: Optional[int],
        range_start: datetime,
        range_end: datetime,
        state: Dict[str, Any],
    ):
        """Returns (record, cached). state["class_id"] tracks the resolved class for error fallback."""
        with self.upstream_session(requester) as client:
            if state["class_id"] is None:
                allowed = discover_own_classes(client, self.context.local_now())
                if allowed:
                    self.context.own_classes.set(requester.id, allowed)
                state["class_id"] = resolve_permitted_class_id(requested_id, allowed)
                if state["class_id"] is None:
                    raise errors.no_classes_found()
                if requested_id is not None and state["class_id"] != requested_id:
                    logger.info(f"Class {requested_id} not permitted for {requester.id}, using {state['class_id']}")

                cached = self._lookup_fresh(self.class_store, state["class_id"], range_start, range_end)
                if cached is not None:
                    return cached, True

            class_id = state["class_id"]
            lessons = self._fetch_or_empty(
                lambda: client.fetch_class_timetable(range_start, range_end, class_id), "class timetable"
            )

        payload = [dict(lesson) for lesson in lessons if isinstance(lesson, dict)]
        return self.class_store.insert(class_id, range_start, range_end, payload), False

    def _schedule_class_prefetch(self, requester: Account, class_id: int, range_start: datetime, range_end: datetime) -> None:
        if self.settings.prefetch:
            offset = self.settings.prefetch_offset_days
            for days in (-offset, offset):
                s, e = shift_range(range_start, range_end, days)
                self.runner.submit(
                    f"prefetch:class:{class_id}:{s.date()}", self._prefetch_class_range, requester, class_id, s, e
                )
        self.runner.submit(f"prune:{self.class_store.model.__tablename__}", self.class_pruner.tick)

    def _prefetch_class_range(self, requester: Account, class_id: int, range_start: datetime, range_end: datetime) -> None:
        try:
            if self._lookup_fresh(self.class_store, class_id, range_start, range_end) is not None:
                return
            state = {"class_id": class_id}
            self._single_flight(
                ("class", requester.id, class_id, range_start, range_end),
                lambda: self._fetch_and_store_class(requester, class_id, range_start, range_end, state),
            )
        except Exception as e:
            logger.debug(f"Class prefetch skipped for {class_id} [{range_start} .. {range_end}]: {e}")

    def get_subject_classes(self, subject_id: str) -> List[ClassInfo]:
        """Classes the subject may view (cached process-locally)."""
        cached = self.context.own_classes.get(subject_id)
        if cached:
            return cached
        account = self.credentials.get_account(subject_id, not_found_message="User not found")
        with self.upstream_session(account) as client:
            classes = discover_own_classes(client, self.context.local_now())
        if not classes:
            raise errors.no_classes_found()
        self.context.own_classes.set(subject_id, classes)
        return classes

    def _cached_upstream(self, cache: TtlCache, subject_id: str, fetch: Callable[[UpstreamClient], Any], what: str) -> Any:
        """
        Process-locally cached upstream data for a subject. While the upstream is unavailable an
        expired copy is served; credential problems always propagate.
        """
        cached = cache.get(subject_id)
        if cached is not None:
            return cached
        account = self.credentials.get_account(subject_id, not_found_message="User not found")
        try:
            with self.upstream_session(account) as client:
                value = fetch(client)
        except errors.AppError as err:
            if err.code not in (errors.UNTIS_LOGIN_FAILED, errors.UNTIS_FETCH_FAILED):
                raise
            entry = cache.get_entry(subject_id)
            if entry is not None:
                logger.warning(f"Serving expired {what} for {subject_id}: {err.code}")
                return entry[0]
            raise errors.fetch_failed(f"Failed to fetch {what}") from err
        cache.set(subject_id, value)
        return value

    def _all_classes(self, subject_id: str) -> List[ClassInfo]:
        return self._cached_upstream(
            self.context.all_classes,
            subject_id,
            lambda client: normalize_classes(self._fetch_or_empty(client.fetch_all_classes, "classes")),
            "classes",
        )

    def get_holidays(self, subject_id: str) -> List[Dict[str, Any]]:
        """School holidays as seen by the subject's account."""
        return self._cached_upstream(
            self.context.holidays,
            subject_id,
            lambda client: self._fetch_or_empty(client.fetch_holidays, "holidays"),
            "holidays",
        )

    def search_classes(self, subject_id: str, query: str) -> List[ClassInfo]:
        if not query or len(query.strip()) < MIN_CLASS_QUERY_LENGTH:
            return []
        return filter_classes(self._all_classes(subject_id), query, limit=self.settings.class_search_limit)

    def find_class(self, subject_id: str, name: str) -> ClassInfo:
        info = find_class_by_name(name, self._all_classes(subject_id))
        if info is None:
            raise errors.class_not_found(name)
        return info

    def _lookup_fresh(self, store: CacheStore, subject_key: Any, range_start: datetime, range_end: datetime):
        try:
            return store.lookup_fresh(subject_key, range_start, range_end, self.settings.cache_ttl_seconds)
        except Exception as e:
            logger.warning(f"{store.model.__tablename__} cache lookup failed: {e}")
            return None

    def _fallback(
        self,
        store: CacheStore,
        subject_key: Any,
        range_start: Optional[datetime],
        range_end: Optional[datetime],
        err: errors.AppError,
    ):
        if not errors.is_fallback_eligible(err):
            return None
        try:
            fallback = store.lookup_latest_or_fallback(subject_key, range_start, range_end)
        except Exception as e:
            logger.warning(f"{store.model.__tablename__} fallback lookup failed: {e}")
            return None
        if fallback is not None:
            logger.warning(
                f"Serving cached {store.model.__tablename__} snapshot for {subject_key} due to {err.code}: {err.message}"
            )
        return fallback
