from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


def ok(data: Any = None, message: str | None = None, status_code: int = 200) -> JSONResponse:
    content: dict[str, Any] = {"success": True}
    if data is not None:
        content["data"] = data
    if message:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def fail(message: str, status_code: int, details: dict[str, Any] | None = None) -> JSONResponse:
    content: dict[str, Any] = {"success": False, "message": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def request_meta(request: Request) -> dict[str, str | None]:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "referer": request.headers.get("referer"),
    }
