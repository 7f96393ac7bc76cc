"""
Tunables for the timetable cache, validated from the `timetable` config section.
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class TimetableSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    cache_ttl_seconds: float = Field(5 * 60, gt=0)
    max_age_days: int = Field(45, gt=0)
    max_history_per_range: int = Field(2, ge=1)
    cleanup_interval_seconds: float = Field(6 * 60 * 60, ge=0)
    prefetch: bool = True
    prefetch_offset_days: int = 7
    single_flight: bool = True

    class_list_ttl_seconds: float = Field(30 * 60, gt=0)
    all_classes_ttl_seconds: float = Field(60 * 60, gt=0)
    holidays_ttl_seconds: float = Field(6 * 60 * 60, gt=0)
    class_search_limit: int = 20

    exam_update_interval_seconds: float = Field(6 * 60 * 60, gt=0)
    exam_update_startup_delay_seconds: float = Field(60, ge=0)
    exam_lookahead_months: int = Field(1, ge=0)
    exam_update_subject_delay_seconds: float = Field(2, ge=0)

    warmup_enabled: bool = False
    warmup_interval_seconds: float = Field(30 * 60, gt=0)
    warmup_startup_delay_seconds: float = Field(10, ge=0)
    warmup_batch_size: int = Field(5, ge=1)

    background_workers: int = Field(4, ge=1)

    @classmethod
    def from_config(cls, config_data: Optional[Dict[str, Any]]) -> "TimetableSettings":
        section = (config_data or {}).get("timetable") or {}
        return cls.model_validate(section)
