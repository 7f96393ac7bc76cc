import logging
import sys
import threading
from typing import Any, Dict, Optional

from .config import Config
from .context import SchedulerContext
from .task_manager import TaskManager


class TimetableCacheApp:
    def __init__(self, config_path: Optional[str] = None, watch_config: bool = True):
        self.logger = logging.getLogger(self.__class__.__name__)

        self.config = Config(config_path=config_path, watch=watch_config)
        self.config.register_change_callback(self.handle_config_change)

        self._setup_logging()

        # Initialize database (before services so tables exist)
        from .db import init_db
        init_db(self.config.data)

        from timetable_cache.timetable import TimetableOrchestrator, TimetableSettings
        from timetable_cache.timetable.backends import get_client_factory
        from timetable_cache.timetable.credentials import CredentialStore, get_cipher

        settings = TimetableSettings.from_config(self.config.data)
        self.task_manager = TaskManager(max_workers=settings.background_workers)
        self.context = SchedulerContext(
            class_list_ttl_seconds=settings.class_list_ttl_seconds,
            all_classes_ttl_seconds=settings.all_classes_ttl_seconds,
            holidays_ttl_seconds=settings.holidays_ttl_seconds,
        )

        client_factory = get_client_factory(self.config.section("untis"))
        if client_factory is None:
            raise ValueError(f"Unknown untis backend: {self.config.section('untis').get('backend')}")

        self.orchestrator = TimetableOrchestrator(
            client_factory,
            credentials=CredentialStore(get_cipher(self.config.section("credentials").get("cipher"))),
            settings=settings,
            context=self.context,
            runner=self.task_manager.background,
        )
        self.tasks = []
        self._stop_event = threading.Event()

    def _setup_logging(self):
        """Configure logging to write to both file and stdout"""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        logging_config = self.config.section("logging")
        root_logger.setLevel(getattr(logging, str(logging_config.get("level", "INFO")).upper(), logging.INFO))

        # Create formatter with line numbers
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )

        log_file = logging_config.get("file")
        if log_file:
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

        logging.info("Timetable cache starting...")

    def handle_config_change(self, new_config: Dict[str, Any]) -> None:
        """Re-apply the logging level and timetable tunables after a config reload."""
        self.logger.info("Handling config change")
        try:
            level = str((new_config.get("logging") or {}).get("level", "INFO")).upper()
            logging.getLogger().setLevel(getattr(logging, level, logging.INFO))

            from timetable_cache.timetable import TimetableSettings
            self.orchestrator.apply_settings(TimetableSettings.from_config(new_config))
        except Exception as e:
            self.logger.error(f"Error handling config change: {e}", exc_info=True)

    def start(self) -> None:
        """Start the periodic tasks and, when enabled, the API server."""
        from timetable_cache.timetable import build_tasks

        self.tasks = build_tasks(self.orchestrator)
        for task in self.tasks:
            task.start(self.task_manager)

        try:
            from timetable_cache.api.server import run_api_server
            run_api_server(self)
        except Exception as e:
            self.logger.warning(f"API server not started: {e}")

    def run(self) -> None:
        try:
            self.start()
            while not self._stop_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.logger.info("Interrupted, shutting down")
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        self.task_manager.stop()
        self.config.cleanup()
