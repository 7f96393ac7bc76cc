"""
Class directory helpers: normalize upstream class entries into ClassInfo, discover the classes a
subject may view, resolve a requested class against them, and search all classes by name.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from timetable_cache.timetable.ranges import end_of_iso_week, start_of_iso_week
from timetable_cache.timetable.schemas import ClassInfo

logger = logging.getLogger(__name__)

_ID_FIELDS = ("id", "klasseId", "classId")


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = int(value.strip(), 10)
        except ValueError:
            return None
    if isinstance(value, int) and value > 0:
        return value
    return None


def _text(entry: Dict[str, Any], key: str) -> Optional[str]:
    value = entry.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def normalize_class(entry: Any) -> Optional[ClassInfo]:
    """Upstream class dict -> ClassInfo, or None when no positive integer id can be found."""
    if not isinstance(entry, dict):
        return None
    candidates = [entry.get(field) for field in _ID_FIELDS]
    nested = entry.get("klasse")
    if isinstance(nested, dict):
        candidates.append(nested.get("id"))
    class_id = next((v for v in map(_positive_int, candidates) if v is not None), None)
    if class_id is None:
        return None
    name = (
        _text(entry, "name")
        or _text(entry, "longName")
        or _text(entry, "longname")
        or _text(entry, "displayName")
        or f"Class {class_id}"
    )
    long_name = _text(entry, "longName") or _text(entry, "longname") or name
    return ClassInfo(class_id, name, long_name)


def normalize_classes(entries: Iterable[Any]) -> List[ClassInfo]:
    """Normalize and de-duplicate by id, keeping the last entry seen for an id."""
    seen: Dict[int, ClassInfo] = {}
    for entry in entries or []:
        info = normalize_class(entry)
        if info is not None:
            seen[info.id] = info
    return list(seen.values())


def discover_own_classes(client, today) -> List[ClassInfo]:
    """
    Classes the logged-in subject belongs to: the upstream own-classes list, or, when that is
    empty or fails, the classes referenced by lessons of the current ISO week.
    """
    classes: List[ClassInfo] = []
    try:
        classes = normalize_classes(client.fetch_own_classes())
    except Exception as e:
        logger.warning(f"Own classes lookup failed: {e}")

    if not classes:
        try:
            lessons = client.fetch_lessons_for_range(start_of_iso_week(today), end_of_iso_week(today))
            referenced = []
            for lesson in lessons or []:
                if isinstance(lesson, dict) and isinstance(lesson.get("kl"), list):
                    referenced.extend(lesson["kl"])
            classes = normalize_classes(referenced)
        except Exception as e:
            logger.warning(f"Class inference from timetable failed: {e}")
    return classes


def resolve_permitted_class_id(requested: Optional[int], allowed: List[ClassInfo]) -> Optional[int]:
    """The requested id when permitted, else the first permitted class, else None."""
    if not allowed:
        return None
    if requested is not None and any(c.id == requested for c in allowed):
        return requested
    return allowed[0].id


def find_class_by_name(name: str, classes: List[ClassInfo]) -> Optional[ClassInfo]:
    wanted = name.strip().lower()
    for info in classes:
        if info.name.lower() == wanted or info.long_name.lower() == wanted:
            return info
    return None


def filter_classes(classes: List[ClassInfo], query: str, limit: int = 20) -> List[ClassInfo]:
    q = query.strip().lower()
    if not q:
        return []
    return [c for c in classes if q in c.name.lower() or q in c.long_name.lower()][:limit]
