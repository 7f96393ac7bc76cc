import yaml
from pathlib import Path
import os
from typing import Any, Dict, Optional, List, Callable
import logging
from watchdog.observers import Observer
from watchdog.events import FileSystemEventHandler, FileModifiedEvent
import time
import re


def default_config(config_dir: Path) -> Dict[str, Any]:
    return {
        "database": {
            "path": str(config_dir / "timetable.db"),
        },
        "api": {
            "enabled": True,
            "host": "127.0.0.1",
            "port": 8765,
        },
        "untis": {
            "host": "${UNTIS_HOST}",
            "school": "${UNTIS_DEFAULT_SCHOOL}",
            "client_name": "timetable-cache",
            "timeout": 15,
        },
        "credentials": {
            "cipher": "plain",
        },
        "timetable": {
            "cache_ttl_seconds": 300,
            "max_age_days": 45,
            "max_history_per_range": 2,
            "cleanup_interval_seconds": 6 * 60 * 60,
            "prefetch": True,
            "single_flight": True,
            "exam_update_interval_seconds": 6 * 60 * 60,
            "exam_update_startup_delay_seconds": 60,
            "exam_lookahead_months": 1,
            "exam_update_subject_delay_seconds": 2,
            "class_list_ttl_seconds": 30 * 60,
            "all_classes_ttl_seconds": 60 * 60,
            "holidays_ttl_seconds": 6 * 60 * 60,
            "warmup_enabled": False,
            "warmup_interval_seconds": 30 * 60,
            "warmup_batch_size": 5,
            "background_workers": 4,
        },
        "logging": {
            "level": "INFO",
            "file": str(config_dir / "timetable_cache.log"),
        },
    }


class ConfigChangeHandler(FileSystemEventHandler):
    def __init__(self, config):
        self.config = config
        self.last_modified = 0
        self.cooldown = 1.0  # Cooldown period in seconds

    def on_modified(self, event):
        if not isinstance(event, FileModifiedEvent):
            return

        current_time = time.time()
        if current_time - self.last_modified < self.cooldown:
            return

        if event.src_path == str(self.config.config_file):
            try:
                self.last_modified = current_time
                self.config.reload()
            except Exception as e:
                logging.error(f"Error handling config change: {e}")


class Config:
    def __init__(self, config_path: Optional[str] = None, watch: bool = True):
        logging.debug("Initializing Config class")

        self.change_callbacks: List[Callable] = []
        self._loading = False  # Lock to prevent recursive reloading

        if config_path:
            self.config_file = Path(config_path).resolve()
            self.config_dir = self.config_file.parent
        else:
            self.config_dir = Path(__file__).parent.parent
            self.config_file = self.config_dir / "config.yaml"

        logging.debug(f"Using config directory: {self.config_dir}")
        logging.debug(f"Using config file: {self.config_file}")

        # Load environment variables from .env file
        self._load_env_file()

        self._ensure_config_exists()
        self._load_config()

        self.observer = None
        if watch:
            self.observer = Observer()
            handler = ConfigChangeHandler(self)
            logging.info(f"Path monitored for reloading: {self.config_dir}")
            self.observer.schedule(handler, str(self.config_dir), recursive=False)
            self.observer.start()

    def register_change_callback(self, callback: Callable) -> None:
        """Register a callback to be called when config changes"""
        self.change_callbacks.append(callback)

    def reload(self) -> None:
        """Reload config and notify listeners"""
        if self._loading:
            return

        self._loading = True
        try:
            logging.info("Config file change detected - reloading configuration")

            # Wait briefly for file to be fully written
            time.sleep(0.1)

            old_config = self.data.copy() if hasattr(self, 'data') else {}
            self._load_config()

            self._log_config_changes(old_config, self.data)

            for callback in self.change_callbacks:
                try:
                    callback(self.data)
                except Exception as e:
                    logging.error(f"Error in config change callback: {e}")

        except Exception as e:
            logging.error(f"Error reloading config: {e}")
            logging.exception(e)
        finally:
            self._loading = False

    def _log_config_changes(self, old_config: Dict, new_config: Dict) -> None:
        """Log the differences between old and new configs"""
        def compare_dict(path: str, dict1: Dict, dict2: Dict) -> None:
            all_keys = set(dict1.keys()) | set(dict2.keys())
            for key in all_keys:
                current_path = f"{path}.{key}" if path else key

                if key in dict1 and key in dict2:
                    if isinstance(dict1[key], dict) and isinstance(dict2[key], dict):
                        compare_dict(current_path, dict1[key], dict2[key])
                    elif dict1[key] != dict2[key]:
                        logging.info(f"Config changed: {current_path}: {dict1[key]} -> {dict2[key]}")

                elif key in dict1:
                    logging.info(f"Config removed: {current_path}: {dict1[key]}")

                else:
                    logging.info(f"Config added: {current_path}: {dict2[key]}")

        logging.info("=== Configuration Changes Detected ===")
        compare_dict("", old_config, new_config)
        logging.info("=== End of Configuration Changes ===")

    def cleanup(self) -> None:
        """Stop the file observer"""
        if self.observer is not None:
            self.observer.stop()
            self.observer.join()

    def _ensure_config_exists(self) -> None:
        """Create default config if it doesn't exist"""
        if not self.config_dir.exists():
            logging.info(f"Creating config directory: {self.config_dir}")
            self.config_dir.mkdir(parents=True)

        if not self.config_file.exists():
            logging.info(f"Creating default config file: {self.config_file}")
            self.config_file.write_text(yaml.dump(default_config(self.config_dir)))

    def _load_env_file(self) -> None:
        """Load environment variables from .env file"""
        env_files = [
            self.config_dir / ".env",
            self.config_dir.parent / ".env",
            Path.cwd() / ".env"
        ]

        env_file = None
        for path in env_files:
            if path.exists():
                env_file = path
                break

        if not env_file:
            logging.debug("No .env file found, skipping environment variable loading")
            return

        logging.info(f"Loading environment variables from: {env_file}")
        try:
            with open(env_file, 'r') as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#'):
                        continue

                    # KEY=VALUE
                    match = re.match(r'^([A-Za-z_][A-Za-z0-9_]*)\s*=\s*(.*)$', line)
                    if match:
                        key, value = match.groups()
                        value = value.strip('"').strip("'")
                        # Never override variables already set in the environment
                        if key not in os.environ:
                            os.environ[key] = value
                            logging.debug(f"Loaded env var: {key}")
        except Exception as e:
            logging.warning(f"Error loading .env file: {e}")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute ${VAR_NAME} / $VAR_NAME strings from the environment"""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        elif isinstance(data, str):
            if data.startswith('${') and data.endswith('}'):
                var_name = data[2:-1]
                return os.environ.get(var_name, data)
            elif data.startswith('$') and len(data) > 1:
                var_name = data[1:]
                return os.environ.get(var_name, data)
            return data
        else:
            return data

    def _load_config(self) -> None:
        """Load configuration from file"""
        try:
            logging.debug(f"Loading config from: {self.config_file}")
            with open(self.config_file) as f:
                new_data = yaml.safe_load(f)

            if not isinstance(new_data, dict):
                raise ValueError("Invalid config format: root must be a dictionary")

            new_data = self._substitute_env_vars(new_data)

            self.data = new_data
            logging.debug(f"Loaded config data: {self.data}")

            if "logging" in self.data and "file" in self.data["logging"]:
                self.data["logging"]["file"] = os.path.expanduser(self.data["logging"]["file"])

        except Exception as e:
            logging.error(f"Error loading config: {e}")
            if hasattr(self, 'data'):
                logging.info("Keeping previous configuration")
            else:
                logging.info("Using default configuration")
                self.data = default_config(self.config_dir)

    def section(self, name: str) -> Dict[str, Any]:
        """Return one top-level config section (empty dict when absent)."""
        value = self.data.get(name)
        return value if isinstance(value, dict) else {}
