from __future__ import annotations

import logging

from flask import Flask, g, jsonify
from werkzeug.exceptions import HTTPException

from utils import ApiError, err

_HTTP_CODES = {
    400: "BAD_REQUEST",
    401: "AUTH_INVALID",
    404: "NOT_FOUND",
    405: "BAD_REQUEST",
    409: "CONFLICT",
    413: "BAD_REQUEST",
    429: "RATE_LIMITED",
    503: "DEPENDENCY_UNAVAILABLE",
}


def _respond(code: str, message: str, status: int):
    payload, _ = err(code, message, http_status=status)
    if getattr(g, "request_id", None):
        payload["request_id"] = g.request_id
    return jsonify(payload), status


def init_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def _api_error(e: ApiError):
        if e.http_status >= 500:
            logging.getLogger("api").warning(
                "request_id=%s code=%s message=%s", getattr(g, "request_id", ""), e.code, e.message
            )
        return _respond(e.code, e.message, e.http_status)

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        status = int(e.code or 500)
        return _respond(_HTTP_CODES.get(status, "INTERNAL"), str(e.description or "HTTP error"), status)

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        logging.getLogger("app").exception("Unhandled exception request_id=%s", getattr(g, "request_id", ""))
        return _respond("INTERNAL", "Unexpected error", 500)
