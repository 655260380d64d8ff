"""
API blueprints.

``register_error_handlers`` maps the service exception hierarchy to JSON
error responses; every blueprint calls it once at import time so all
endpoints answer with the same status codes and ``{"error", "code"}`` body.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from docflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidStateError,
    LockContentionError,
    NotFoundError,
    OutOfOrderError,
    ValidationError,
)
from docflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

LOCK_RETRY_AFTER_SECONDS = 1


def register_error_handlers(bp):

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(AuthorizationError)
    def _handle_forbidden(error: AuthorizationError):
        return api_error(E.FORBIDDEN, str(error))

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(OutOfOrderError)
    def _handle_out_of_order(error: OutOfOrderError):
        return api_error(E.OUT_OF_ORDER, str(error), details={"blocking_orders": error.blocking_orders})

    @bp.errorhandler(InvalidStateError)
    def _handle_invalid_state(error: InvalidStateError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(LockContentionError)
    def _handle_lock_contention(error: LockContentionError):
        response, status = api_error(E.UNAVAILABLE, str(error))
        response.headers["Retry-After"] = str(LOCK_RETRY_AFTER_SECONDS)
        return response, status

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return jsonify({"error": "Internal server error", "code": E.INTERNAL}), 500

    return bp
