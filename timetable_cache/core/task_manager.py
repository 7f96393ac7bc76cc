"""
Single place for scheduling: in-memory timers for periodic tasks and a worker pool
for detached background work (adjacent-range prefetch, pruning ticks).
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from threading import Timer
from typing import Any, Callable, Dict, List, Optional


class BackgroundRunner:
    """
    Detached fire-and-forget work. Each job runs inside its own error boundary:
    failures are logged and never reach the caller that submitted the job.
    """

    def __init__(self, max_workers: int = 4):
        self.logger = logging.getLogger("BackgroundRunner")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="background")

    def submit(self, name: str, callback: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        def _guarded():
            try:
                callback(*args, **kwargs)
            except Exception as e:
                self.logger.warning(f"Background job {name} failed: {e}", exc_info=True)

        try:
            self._executor.submit(_guarded)
        except RuntimeError as e:
            # Executor already shut down; in-flight background work is abandoned on shutdown
            self.logger.debug(f"Background job {name} dropped: {e}")

    def shutdown(self, wait: bool = False) -> None:
        self._executor.shutdown(wait=wait)


class TaskManager:
    def __init__(self, max_workers: int = 4):
        self.tasks: Dict[str, Timer] = {}
        self.logger = logging.getLogger("TaskManager")
        self.background = BackgroundRunner(max_workers=max_workers)

    def schedule_task(
        self,
        name: str,
        callback: Callable,
        delay: float,
        one_time: bool = True,
        interval: Optional[float] = None,
    ) -> None:
        """Schedule a task to run after delay seconds; repeating tasks then rerun every interval (default: delay)."""
        try:
            self.logger.info(f"Scheduling task {name} with delay {delay} seconds")
            if name in self.tasks:
                self.logger.info(f"Cancelling existing task {name}")
                self.tasks[name].cancel()

            scheduled_time = datetime.now().timestamp() + delay
            timer = Timer(delay, self._run_task, args=(name, callback, delay, one_time, interval))
            timer.daemon = True
            timer.scheduled_time = scheduled_time

            self.tasks[name] = timer
            timer.start()
            self.logger.info(f"Timer started for {name}, scheduled for {datetime.fromtimestamp(scheduled_time)}")
        except Exception as e:
            self.logger.error(f"Error scheduling task {name}: {e}")

    def _run_task(self, name: str, callback: Callable, delay: float, one_time: bool, interval: Optional[float]) -> None:
        """Run the task and reschedule if needed."""
        try:
            callback()
            if name in self.tasks:
                self.tasks[name].last_run = datetime.now().timestamp()
        except Exception as e:
            self.logger.error(f"Error running task {name}: {e}")
        if not one_time:
            next_delay = interval if interval is not None else delay
            self.schedule_task(name, callback, next_delay, one_time=False, interval=interval)

    def is_scheduled(self, name: str) -> bool:
        timer = self.tasks.get(name)
        return timer is not None and timer.is_alive()

    def get_active_timers(self) -> List[Dict[str, Any]]:
        """Return list of active timer names and their next run time (for API)."""
        result = []
        for name, timer in self.tasks.items():
            if getattr(timer, "scheduled_time", None) is not None:
                next_run = datetime.fromtimestamp(timer.scheduled_time, tz=timezone.utc)
                result.append({"name": name, "next_run_at": next_run})
        return result

    def stop(self) -> None:
        """Stop all scheduled tasks and abandon queued background work."""
        for task in self.tasks.values():
            task.cancel()
        self.background.shutdown(wait=False)
