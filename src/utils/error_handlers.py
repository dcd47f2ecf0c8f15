"""
Application-wide error handlers.

Anything a route lets escape ends up here and leaves as the standard
error envelope; the session is rolled back first so the next request
starts clean.
"""

import logging
from werkzeug.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from src.extensions import db
from src.services.sequence_engine.errors import SequenceEngineError
from .error_handling import create_error_response, handle_engine_error, handle_exception

logger = logging.getLogger(__name__)

# Werkzeug status -> (envelope code, message)
HTTP_ERRORS = {
    400: ('VALIDATION_ERROR', "Invalid request data"),
    401: ('UNAUTHORIZED', "Authentication required"),
    404: ('NOT_FOUND', "Resource not found"),
    405: ('BAD_REQUEST', "Method not allowed for this endpoint"),
}


def register_error_handlers(app):
    """Register the envelope handlers on ``app``."""

    @app.errorhandler(HTTPException)
    def http_error(error):
        code, message = HTTP_ERRORS.get(error.code, ('BAD_REQUEST', error.description or "HTTP error occurred"))
        return create_error_response(code, message, status_code=error.code)

    @app.errorhandler(SequenceEngineError)
    def engine_error(error):
        db.session.rollback()
        return handle_engine_error(error)

    @app.errorhandler(SQLAlchemyError)
    def database_error(error):
        db.session.rollback()
        return handle_exception(error, "database operation")

    @app.errorhandler(Exception)
    def unhandled_error(error):
        db.session.rollback()
        return handle_exception(error, "request processing")
