"""
Periodic timetable tasks: the exam sweeper and the optional cache warmup.
"""
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional

from dateutil.relativedelta import relativedelta

from timetable_cache.core.task import BaseTask
from timetable_cache.timetable.ranges import end_of_day, end_of_iso_week, start_of_day, start_of_iso_week


class ExamUpdateTask(BaseTask):
    """
    Refresh stored exams for every subject with credentials: today through the lookahead,
    one subject at a time with a pause between them. A failing subject is logged and skipped.
    """

    def __init__(self, orchestrator, sleep: Callable[[float], None] = time.sleep):
        settings = orchestrator.settings
        super().__init__(
            "timetable_exam_update",
            settings.exam_update_interval_seconds,
            settings.exam_update_startup_delay_seconds,
        )
        self.orchestrator = orchestrator
        self._sleep = sleep

    def run_cycle(self) -> None:
        settings = self.orchestrator.settings
        subjects = self.orchestrator.credentials.list_subjects_with_credentials()
        if not subjects:
            self.logger.debug("No subjects with credentials, skipping exam update")
            return

        today = self.orchestrator.context.local_now()
        start = start_of_day(today)
        end = end_of_day(today + relativedelta(months=settings.exam_lookahead_months))
        self.logger.info(f"Updating exams for {len(subjects)} subject(s) from {start.date()} to {end.date()}")

        updated = 0
        for i, account in enumerate(subjects):
            try:
                count = self.orchestrator.update_exams_for_subject(account.id, start, end)
                updated += 1
                self.logger.debug(f"Stored {count} exam(s) for {account.id}")
            except Exception as e:
                self.logger.warning(f"Exam update failed for {account.id}: {e}")
            if i < len(subjects) - 1 and settings.exam_update_subject_delay_seconds > 0:
                self._sleep(settings.exam_update_subject_delay_seconds)

        self.logger.info(f"Exam update finished: {updated}/{len(subjects)} subject(s) updated")


class TimetableWarmupTask(BaseTask):
    """
    Keep the current ISO week warm in the cache for every subject with credentials.
    Subjects are fetched in small concurrent batches; a cycle is skipped while the previous one runs.
    """

    def __init__(self, orchestrator):
        settings = orchestrator.settings
        super().__init__(
            "timetable_warmup",
            settings.warmup_interval_seconds,
            settings.warmup_startup_delay_seconds,
        )
        self.orchestrator = orchestrator
        self._running = False
        self._lock = threading.Lock()

    def run_cycle(self) -> None:
        with self._lock:
            if self._running:
                self.logger.info("Warmup already running, skipping this cycle")
                return
            self._running = True
        try:
            self._warm_current_week()
        finally:
            with self._lock:
                self._running = False

    def _warm_current_week(self) -> None:
        today = self.orchestrator.context.local_now()
        start = start_of_iso_week(today).isoformat()
        end = end_of_iso_week(today).isoformat()
        subjects: List = self.orchestrator.credentials.list_subjects_with_credentials()
        batch_size = self.orchestrator.settings.warmup_batch_size

        warmed = 0
        for offset in range(0, len(subjects), batch_size):
            batch = subjects[offset:offset + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch), thread_name_prefix="warmup") as pool:
                results = list(pool.map(lambda account: self._warm_one(account.id, start, end), batch))
            warmed += sum(1 for ok in results if ok)

        self.logger.info(f"Warmup finished: {warmed}/{len(subjects)} subject(s) warmed")

    def _warm_one(self, subject_id: str, start: str, end: str) -> bool:
        try:
            self.orchestrator.fetch_subject_range(subject_id, subject_id, start, end)
            return True
        except Exception as e:
            self.logger.warning(f"Warmup failed for {subject_id}: {e}")
            return False


def build_tasks(orchestrator, sleep: Optional[Callable[[float], None]] = None) -> List[BaseTask]:
    """Tasks to start for the current settings."""
    tasks: List[BaseTask] = [ExamUpdateTask(orchestrator, sleep=sleep or time.sleep)]
    if orchestrator.settings.warmup_enabled:
        tasks.append(TimetableWarmupTask(orchestrator))
    return tasks
