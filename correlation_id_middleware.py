"""Correlation ID handling: honour or mint ``X-Request-ID`` for each request."""

from __future__ import annotations

import uuid
from typing import Optional

from flask import Flask, g, request

from app_logging import clear_request_context, clear_request_id, set_request_id

HEADER_NAME = "X-Request-ID"
_MAX_LENGTH = 128


def _incoming_request_id() -> Optional[str]:
    value = request.headers.get(HEADER_NAME, "").strip()
    return value[:_MAX_LENGTH] or None


def init_correlation_id(app: Flask) -> None:
    """Attach a request id to the log context and echo it on the response."""

    @app.before_request
    def _assign_request_id() -> None:
        g.request_id = _incoming_request_id() or str(uuid.uuid4())
        set_request_id(g.request_id)

    @app.after_request
    def _echo_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers[HEADER_NAME] = request_id
        return response

    @app.teardown_request
    def _forget_request(_exc):
        clear_request_id()
        clear_request_context()


__all__ = ["HEADER_NAME", "init_correlation_id"]
