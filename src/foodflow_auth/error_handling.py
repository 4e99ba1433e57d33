"""JSON error envelope for the Flask boundary.

Every error response has the shape::

    {"error": {"message", "code", "statusCode", "timestamp", "path",
               "requestId", "details"?}}

Auth errors carry their own status and code. Other HTTP errors keep their
status. Anything unexpected is a 500 whose message is hidden in production.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from .errors import AuthError

logger = structlog.get_logger(__name__)


def request_id() -> str:
    """The current request id, from ``X-Request-ID`` or generated once."""
    rid = g.get("request_id")
    if rid is None:
        rid = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        g.request_id = rid
    return rid


def error_response(
    message: str, code: str, status_code: int, details: dict[str, Any] | None = None
):
    body: dict[str, Any] = {
        "message": message,
        "code": code,
        "statusCode": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": request.path,
        "requestId": request_id(),
    }
    if details:
        body["details"] = details
    return jsonify({"error": body}), status_code


def register_error_handlers(app: Flask, *, production: bool = False) -> None:
    """Install handlers for AuthError, HTTPException and Exception."""

    @app.errorhandler(AuthError)
    def handle_auth_error(e: AuthError):
        logger.warning(
            "request_error",
            request_id=request_id(),
            path=request.path,
            method=request.method,
            status_code=e.status_code,
            code=e.code,
            description=e.description,
        )
        details = e.details if (e.expose_details or not production) else None
        return error_response(e.description, e.code, e.status_code, details)

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        status = e.code or 500
        code = (e.name or "error").upper().replace(" ", "_")
        return error_response(e.description or e.name, code, status)

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        logger.exception(
            "unhandled_exception",
            request_id=request_id(),
            path=request.path,
            method=request.method,
        )
        message = "Internal server error" if production else str(e)
        details = None if production else {"originalError": str(e)}
        return error_response(message, "INTERNAL_ERROR", 500, details)
