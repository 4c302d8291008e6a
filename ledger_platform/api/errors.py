"""Response envelope and error mapping.

Every response body has the shape `{code, message, data, error?}` and the HTTP
status always equals `code`.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from ledger_platform.db import StoreError


def _debug(msg: str) -> None:
    print(f"[api] {msg}")


class ApiError(Exception):
    """An expected failure that maps onto an envelope response."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        error: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message)
        self.status_code = int(status_code)
        self.message = message
        self.error = error
        self.headers = headers


def envelope(code: int, message: str, data: Any = None, error: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"code": int(code), "message": message, "data": data}
    if error is not None:
        body["error"] = error
    return body


def bad_request(message: str, *, error: Optional[str] = None) -> ApiError:
    return ApiError(400, message, error=error)


def not_found(message: str = "not_found") -> ApiError:
    return ApiError(404, message, error="not_found")


def _json(status_code: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _field_name(err: Dict[str, Any]) -> str:
    loc = [str(p) for p in (err.get("loc") or ()) if p not in ("body", "query", "path", "header")]
    return ".".join(loc) or "request"


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    def _api_error(_: Request, exc: ApiError) -> JSONResponse:
        return _json(exc.status_code, envelope(exc.status_code, exc.message, None, exc.error), exc.headers)

    @app.exception_handler(StoreError)
    def _store_error(request: Request, exc: StoreError) -> JSONResponse:
        _debug(f"Store failure on {request.method} {request.url.path}: {exc}")
        return _json(500, envelope(500, "store_error", None, str(exc)))

    @app.exception_handler(RequestValidationError)
    def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = _field_name(first)
        detail = str(first.get("msg") or "invalid value")
        return _json(400, envelope(400, f"invalid_{field}", None, f"{field}: {detail}"))

    @app.exception_handler(HTTPException)
    def _http_error(_: Request, exc: HTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "http_error"
        return _json(exc.status_code, envelope(exc.status_code, message), getattr(exc, "headers", None))

    @app.exception_handler(Exception)
    def _unhandled(request: Request, exc: Exception) -> JSONResponse:
        _debug(f"Unhandled error on {request.method} {request.url.path}: {type(exc).__name__}: {exc}")
        return _json(500, envelope(500, "internal_error", None, type(exc).__name__))
