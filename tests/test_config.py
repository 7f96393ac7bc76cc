import yaml

from timetable_cache.core.config import Config
from timetable_cache.timetable.settings import TimetableSettings


def test_missing_config_is_created_with_defaults(tmp_path):
    config = Config(config_path=str(tmp_path / "config.yaml"), watch=False)

    assert (tmp_path / "config.yaml").exists()
    assert config.section("database")["path"] == str(tmp_path / "timetable.db")
    settings = TimetableSettings.from_config(config.data)
    assert settings.cache_ttl_seconds == 300
    assert settings.max_history_per_range == 2
    assert settings.warmup_enabled is False


def test_env_file_values_are_substituted(tmp_path, monkeypatch):
    # Registered with monkeypatch so the value loaded from .env is removed afterwards
    monkeypatch.setenv("UNTIS_TEST_HOST", "placeholder")
    monkeypatch.delenv("UNTIS_TEST_HOST")
    (tmp_path / ".env").write_text("UNTIS_TEST_HOST='untis.example.org'\n# comment\n")
    (tmp_path / "config.yaml").write_text(yaml.dump({"untis": {"host": "${UNTIS_TEST_HOST}", "school": "$NOT_SET_ANYWHERE"}}))

    config = Config(config_path=str(tmp_path / "config.yaml"), watch=False)

    assert config.section("untis")["host"] == "untis.example.org"
    assert config.section("untis")["school"] == "$NOT_SET_ANYWHERE"
    assert config.section("timetable") == {}


def test_reload_notifies_callbacks(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"timetable": {"cache_ttl_seconds": 60}}))
    config = Config(config_path=str(path), watch=False)
    seen = []
    config.register_change_callback(lambda data: seen.append(TimetableSettings.from_config(data)))

    path.write_text(yaml.dump({"timetable": {"cache_ttl_seconds": 120, "unknown_key": 1}}))
    config.reload()

    assert [s.cache_ttl_seconds for s in seen] == [120]


def test_broken_config_keeps_previous_data(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"timetable": {"max_age_days": 10}}))
    config = Config(config_path=str(path), watch=False)

    path.write_text("- just\n- a list\n")
    config.reload()

    assert config.section("timetable") == {"max_age_days": 10}
