"""
Timetable API. Mounted at /api/timetable/.
The requester is identified by the X-User-Id header; authentication happens in front of this service.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Header

from timetable_cache.core.errors import AppError
from timetable_cache.timetable.schemas import ClassInfoResponse


def _requester(x_user_id: Optional[str]) -> str:
    if not x_user_id or not x_user_id.strip():
        raise AppError("Missing X-User-Id header", 401, "UNAUTHENTICATED")
    return x_user_id.strip()


def get_router(service_app) -> APIRouter:
    """Return the timetable router; errors surface as AppError for the app-level handler."""
    router = APIRouter(tags=["Timetable"])

    def orchestrator():
        return service_app.orchestrator

    @router.get("/me")
    def get_my_timetable(
        start: Optional[str] = None,
        end: Optional[str] = None,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        requester = _requester(x_user_id)
        return orchestrator().fetch_subject_range(requester, requester, start, end).to_json()

    @router.get("/users/{user_id}")
    def get_user_timetable(
        user_id: str,
        start: Optional[str] = None,
        end: Optional[str] = None,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        requester = _requester(x_user_id)
        return orchestrator().fetch_subject_range(requester, user_id, start, end).to_json()

    @router.get("/holidays")
    def list_holidays(x_user_id: Optional[str] = Header(None)) -> List[Dict[str, Any]]:
        requester = _requester(x_user_id)
        return orchestrator().get_holidays(requester)

    @router.get("/classes")
    def list_my_classes(x_user_id: Optional[str] = Header(None)) -> List[Dict[str, Any]]:
        """Classes the requester may view."""
        requester = _requester(x_user_id)
        classes = orchestrator().get_subject_classes(requester)
        return [ClassInfoResponse.from_info(c).model_dump(by_alias=True) for c in classes]

    @router.get("/classes/search")
    def search_classes(q: str = "", x_user_id: Optional[str] = Header(None)) -> List[Dict[str, Any]]:
        requester = _requester(x_user_id)
        classes = orchestrator().search_classes(requester, q)
        return [ClassInfoResponse.from_info(c).model_dump(by_alias=True) for c in classes]

    @router.get("/classes/{class_id}")
    def get_class_timetable(
        class_id: int,
        start: Optional[str] = None,
        end: Optional[str] = None,
        x_user_id: Optional[str] = Header(None),
    ) -> Dict[str, Any]:
        requester = _requester(x_user_id)
        return orchestrator().fetch_class_range(requester, class_id, start, end).to_json()

    return router
