"""Error taxonomy for the JSON API and the handlers that render it."""
from __future__ import annotations

import logging
from typing import Optional

from flask import jsonify
from werkzeug.exceptions import HTTPException

from extensions import db

logger = logging.getLogger(__name__)


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class ValidationFailed(ApiError):
    status_code = 400


class MissingContext(ApiError):
    status_code = 400


class Unauthorized(ApiError):
    status_code = 401


class Forbidden(ApiError):
    status_code = 403


class NotFound(ApiError):
    status_code = 404


class Conflict(ApiError):
    status_code = 409


class UpstreamError(ApiError):
    """An external collaborator (object storage, AI service) failed."""
    status_code = 502


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        db.session.rollback()
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description or exc.name}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        logger.exception("Unhandled error: %s", exc)
        db.session.rollback()
        return jsonify({"error": "Internal server error"}), 500
