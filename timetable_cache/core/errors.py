"""
Typed application errors. Each carries an HTTP-style status and a machine-readable code
that the API layer turns into a JSON error response.
"""
from typing import Any, Dict


class AppError(Exception):
    def __init__(self, message: str, status: int = 500, code: str = "INTERNAL_ERROR"):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, status={self.status}, code={self.code!r})"


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, 404, "NOT_FOUND")


# Codes
BAD_CREDENTIALS = "BAD_CREDENTIALS"
UNTIS_LOGIN_FAILED = "UNTIS_LOGIN_FAILED"
UNTIS_FETCH_FAILED = "UNTIS_FETCH_FAILED"
MISSING_UNTIS_SECRET = "MISSING_UNTIS_SECRET"
DECRYPT_FAILED = "DECRYPT_FAILED"
NO_CLASSES_FOUND = "NO_CLASSES_FOUND"
CLASS_NOT_FOUND = "CLASS_NOT_FOUND"
INVALID_DATE = "INVALID_DATE"

# Errors that mean the upstream is unusable right now; a stale cached copy may be served instead
FALLBACK_CODES = frozenset({BAD_CREDENTIALS, UNTIS_LOGIN_FAILED, UNTIS_FETCH_FAILED})


def bad_credentials() -> AppError:
    return AppError("Invalid Untis credentials", 401, BAD_CREDENTIALS)


def login_failed() -> AppError:
    return AppError("Untis login failed", 502, UNTIS_LOGIN_FAILED)


def fetch_failed(message: str = "Untis fetch failed") -> AppError:
    return AppError(message, 502, UNTIS_FETCH_FAILED)


def missing_secret() -> AppError:
    return AppError("User missing encrypted Untis credential", 400, MISSING_UNTIS_SECRET)


def decrypt_failed() -> AppError:
    return AppError("Credential decryption failed", 500, DECRYPT_FAILED)


def no_classes_found() -> AppError:
    return AppError("No classes linked to this account", 404, NO_CLASSES_FOUND)


def is_fallback_eligible(error: AppError) -> bool:
    return str(error.code or "").upper() in FALLBACK_CODES


def class_not_found(name: str) -> AppError:
    return AppError(f"Class not found: {name}", 404, CLASS_NOT_FOUND)


def invalid_date(value: str) -> AppError:
    return AppError(f"Invalid date: {value}", 400, INVALID_DATE)
