"""
WebUntis backend: JSON-RPC session (authenticate / getTimetable / getKlassen / getHolidays / logout)
plus the REST endpoints for homework and exams, sharing one requests.Session cookie jar.
"""
import base64
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from .base import UpstreamAuthError, UpstreamClient, UpstreamError, UpstreamNoResultError
from ..ranges import to_date_int

ELEMENT_TYPE_CLASS = 1
BAD_CREDENTIALS_CODE = -8504

_TIMETABLE_FIELDS = ["id", "name", "longname", "externalkey"]


class WebUntisClient(UpstreamClient):
    """One WebUntis session for one account."""

    def __init__(
        self,
        host: str,
        school: str,
        username: str,
        password: str,
        client_name: str = "timetable-cache",
        timeout: float = 15,
        logger: Optional[logging.Logger] = None,
        session: Optional[requests.Session] = None,
    ):
        self.host = host
        self.school = school
        self.username = username
        self.password = password
        self.client_name = client_name
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)
        self.http = session or requests.Session()
        self._session_info: Dict[str, Any] = {}

    @property
    def base_url(self) -> str:
        host = self.host if self.host.startswith("http") else f"https://{self.host}"
        return f"{host.rstrip('/')}/WebUntis"

    def _rpc(self, method: str, params: Optional[Dict[str, Any]] = None) -> Any:
        body = {
            "id": str(int(time.time() * 1000)),
            "method": method,
            "params": params or {},
            "jsonrpc": "2.0",
        }
        try:
            response = self.http.post(
                f"{self.base_url}/jsonrpc.do",
                params={"school": self.school},
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"{method}: network error: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"{method}: invalid JSON response") from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            message = str(error.get("message") or "")
            if error.get("code") == BAD_CREDENTIALS_CODE or "bad credentials" in message.lower():
                raise UpstreamAuthError(message or "bad credentials")
            raise UpstreamError(f"{method}: {message or error}")
        if not isinstance(data, dict) or data.get("result") is None:
            raise UpstreamNoResultError(f"{method}: server didn't return any result")
        return data["result"]

    def _rest(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.http.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"{path}: network error: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"{path}: invalid JSON response") from e
        payload = data.get("data") if isinstance(data, dict) else None
        if payload is None:
            raise UpstreamNoResultError(f"{path}: server didn't return any result")
        return payload

    def login(self) -> None:
        school_cookie = "_" + base64.b64encode(self.school.encode()).decode()
        self.http.cookies.set("schoolname", school_cookie)
        result = self._rpc(
            "authenticate",
            {"user": self.username, "password": self.password, "client": self.client_name},
        )
        if not isinstance(result, dict) or not result.get("sessionId"):
            raise UpstreamError("authenticate: no session returned")
        self._session_info = result
        self.http.cookies.set("JSESSIONID", result["sessionId"])
        self.logger.debug(f"WebUntis session opened for {self.username}")

    def logout(self) -> None:
        try:
            self._rpc("logout")
        finally:
            self._session_info = {}
            self.http.close()

    def _timetable(self, element_id: int, element_type: int, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        options = {
            "id": int(time.time() * 1000),
            "element": {"id": element_id, "type": element_type},
            "startDate": to_date_int(start),
            "endDate": to_date_int(end),
            "showLsText": True,
            "showStudentgroup": True,
            "showLsNumber": True,
            "showSubstText": True,
            "showInfo": True,
            "showBooking": True,
            "klasseFields": _TIMETABLE_FIELDS,
            "roomFields": _TIMETABLE_FIELDS,
            "subjectFields": _TIMETABLE_FIELDS,
            "teacherFields": _TIMETABLE_FIELDS,
        }
        result = self._rpc("getTimetable", {"options": options})
        return result if isinstance(result, list) else []

    def _own_element(self):
        if not self._session_info:
            raise UpstreamError("not logged in")
        return self._session_info.get("personId"), self._session_info.get("personType")

    def fetch_lessons_for_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        person_id, person_type = self._own_element()
        return self._timetable(person_id, person_type, start, end)

    def fetch_lessons_for_today(self) -> List[Dict[str, Any]]:
        now = datetime.now()
        return self.fetch_lessons_for_range(now, now)

    def fetch_homework_for_range(self, start: datetime, end: datetime) -> Dict[str, Any]:
        data = self._rest(
            "/api/homeworks/lessons",
            {"startDate": to_date_int(start), "endDate": to_date_int(end)},
        )
        return {
            "homeworks": data.get("homeworks") or [],
            "lessons": data.get("lessons") or [],
        }

    def fetch_exams_for_range(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        data = self._rest(
            "/api/exams",
            {
                "startDate": to_date_int(start),
                "endDate": to_date_int(end),
                "klasseId": -1,
                "withGrades": "true",
            },
        )
        exams = []
        for raw in data.get("exams") or []:
            exams.append({
                "id": raw.get("id"),
                "date": raw.get("examDate"),
                "startTime": raw.get("startTime"),
                "endTime": raw.get("endTime"),
                "subject": {"name": raw.get("subject") or ""},
                "name": raw.get("name") or "",
                "text": raw.get("text"),
                "teachers": raw.get("teachers"),
                "rooms": raw.get("rooms"),
            })
        return exams

    def fetch_all_classes(self) -> List[Dict[str, Any]]:
        result = self._rpc("getKlassen")
        return result if isinstance(result, list) else []

    def fetch_holidays(self) -> List[Dict[str, Any]]:
        result = self._rpc("getHolidays")
        return result if isinstance(result, list) else []

    def fetch_own_classes(self) -> List[Dict[str, Any]]:
        klasse_id = self._session_info.get("klasseId")
        if not klasse_id:
            return []
        return [c for c in self.fetch_all_classes() if c.get("id") == klasse_id]

    def fetch_class_timetable(self, start: datetime, end: datetime, class_id: int) -> List[Dict[str, Any]]:
        return self._timetable(class_id, ELEMENT_TYPE_CLASS, start, end)
