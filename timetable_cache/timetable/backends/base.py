"""
Interface for upstream timetable providers and the errors they raise.
A client represents one session: login(), any number of fetches, logout().
Dates are datetimes on the way in; lesson/homework/exam items are plain dicts with
YYYYMMDD integer dates on the way out.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List


class UpstreamError(Exception):
    """Upstream unreachable or erroring."""


class UpstreamAuthError(UpstreamError):
    """Upstream rejected the credentials."""


class UpstreamNoResultError(UpstreamError):
    """Upstream answered, but has no data for this query."""


class UpstreamClient(ABC):
    """Abstract session-based upstream client."""

    @abstractmethod
    def login(self) -> None:
        pass

    @abstractmethod
    def logout(self) -> None:
        pass

    @abstractmethod
    def fetch_lessons_for_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_lessons_for_today(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_homework_for_range(self, start: datetime, end: datetime) -> Dict[str, Any]:
        """Return {"homeworks": [...], "lessons": [{"id": int, "subject": str}, ...]}."""
        pass

    @abstractmethod
    def fetch_exams_for_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_own_classes(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_all_classes(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_class_timetable(self, start: datetime, end: datetime, class_id: int) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def fetch_holidays(self) -> List[Dict[str, Any]]:
        """School holidays: [{"id", "name", "longName", "startDate", "endDate"}, ...] with YYYYMMDD dates."""
        pass
