"""
Response shapes exposed to the request layer.
"""
from collections import namedtuple
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

# A class the subject may view; held in process-local caches only.
ClassInfo = namedtuple("ClassInfo", ["id", "name", "long_name"])

FALLBACK_BAD_CREDENTIALS = "BAD_CREDENTIALS"
FALLBACK_UNTIS_UNAVAILABLE = "UNTIS_UNAVAILABLE"


class TimetableResponse(BaseModel):
    """One timetable answer: live, fresh from cache, or a stale fallback (stale=True with fallback_reason)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    user_id: str
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None
    payload: List[Any]
    cached: bool
    stale: bool
    source: str
    last_updated: Optional[datetime] = None
    fallback_reason: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_record(
        cls,
        user_id: str,
        record,
        cached: bool,
        stale: bool = False,
        fallback_reason: Optional[str] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> "TimetableResponse":
        return cls(
            user_id=user_id,
            range_start=record.range_start,
            range_end=record.range_end,
            payload=list(record.payload or []),
            cached=cached,
            stale=stale,
            source="cache" if cached else "live",
            last_updated=record.created_at,
            fallback_reason=fallback_reason,
            error_code=error_code,
            error_message=error_message,
        )

    def to_json(self) -> dict:
        """camelCase dict; optional fallback/error fields are omitted when unset."""
        data = self.model_dump(mode="json", by_alias=True)
        for key in ("fallbackReason", "errorCode", "errorMessage"):
            if data.get(key) is None:
                data.pop(key, None)
        return data


class ClassInfoResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    name: str
    long_name: str

    @classmethod
    def from_info(cls, info: ClassInfo) -> "ClassInfoResponse":
        return cls(id=info.id, name=info.name, long_name=info.long_name)
