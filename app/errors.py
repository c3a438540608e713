from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class NotFound(ApiError):
    def __init__(self, message: str):
        super().__init__(404, "NOT_FOUND", message)


class InvalidTransition(ApiError):
    def __init__(self, message: str):
        super().__init__(409, "INVALID_TRANSITION", message)


class DuplicatePendingJustification(ApiError):
    def __init__(self, message: str = "A pending justification already exists."):
        super().__init__(409, "PENDING_JUSTIFICATION_EXISTS", message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
