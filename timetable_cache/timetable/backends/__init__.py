from .base import UpstreamAuthError, UpstreamClient, UpstreamError, UpstreamNoResultError
from .webuntis import WebUntisClient

__all__ = [
    "UpstreamAuthError",
    "UpstreamClient",
    "UpstreamError",
    "UpstreamNoResultError",
    "WebUntisClient",
    "get_client_factory",
]

_BACKENDS = {
    "webuntis": WebUntisClient,
}


def get_client_factory(untis_config: dict, logger=None):
    """Factory: return a callable (username, password) -> new client session for the configured backend."""
    cls = _BACKENDS.get((untis_config.get("backend") or "webuntis").lower())
    if not cls:
        return None
    host = untis_config.get("host") or ""
    school = untis_config.get("school") or ""
    client_name = untis_config.get("client_name") or "timetable-cache"
    timeout = float(untis_config.get("timeout", 15))

    def factory(username: str, password: str) -> UpstreamClient:
        return cls(
            host,
            school,
            username,
            password,
            client_name=client_name,
            timeout=timeout,
            logger=logger,
        )

    return factory
