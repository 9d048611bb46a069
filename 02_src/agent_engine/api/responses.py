"""Response envelope shared by all routes."""

from typing import Any

from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ApiResponse(BaseModel):
    """{success, data|error, message} envelope."""

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None


def ok(data: Any = None, message: str | None = None) -> dict:
    body: dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


def fail(status_code: int, error: str, message: str | None = None) -> JSONResponse:
    body: dict[str, Any] = {"success": False, "error": error}
    if message:
        body["message"] = message
    return JSONResponse(status_code=status_code, content=body)
