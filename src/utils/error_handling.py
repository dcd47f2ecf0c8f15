"""
API error envelope.

Every failed request answers with the same JSON shape:

    {"error": {"code": ..., "message": ..., "timestamp": ..., "details": {...}}}

Engine errors carry their own ``code``; the table below maps each code
onto its HTTP status.
"""

import logging
from datetime import datetime
from typing import Dict, Any, Optional
from flask import jsonify
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from src.services.sequence_engine.errors import SequenceEngineError

logger = logging.getLogger(__name__)

# Error code -> HTTP status
ERROR_STATUS = {
    # Request problems
    'VALIDATION_ERROR': 400,
    'BAD_REQUEST': 400,
    'WEBHOOK_ERROR': 400,
    'UNAUTHORIZED': 401,
    'NOT_FOUND': 404,
    'CONFLICT': 409,

    # Sequence engine
    'INVALID_TRANSITION': 409,
    'CONFIGURATION_ERROR': 400,
    'GENERATION_FAILED': 502,
    'DISPATCH_FAILED': 502,

    # Server side
    'INTERNAL_ERROR': 500,
    'DATABASE_ERROR': 500,
}

# Engine failures worth an error log line; the rest are caller mistakes
UPSTREAM_FAILURES = ('GENERATION_FAILED', 'DISPATCH_FAILED')


def create_error_response(
    code: str,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    status_code: Optional[int] = None
) -> tuple:
    """
    Build the error envelope.

    Args:
        code: Key of ERROR_STATUS; unknown codes are reported as INTERNAL_ERROR
        message: Human-readable message
        details: Extra structured context (omitted when empty)
        status_code: Overrides the status mapped from ``code``

    Returns:
        Tuple of (json_response, status_code)
    """
    if code not in ERROR_STATUS:
        logger.warning(f"Unknown error code {code}, reporting INTERNAL_ERROR")
        code = 'INTERNAL_ERROR'

    body = {
        'code': code,
        'message': message,
        'timestamp': datetime.utcnow().isoformat()
    }
    if details:
        body['details'] = details

    return jsonify({'error': body}), status_code or ERROR_STATUS[code]


def handle_validation_error(message: str, details: Optional[Dict[str, Any]] = None) -> tuple:
    return create_error_response('VALIDATION_ERROR', message, details)


def handle_conflict_error(message: str, details: Optional[Dict[str, Any]] = None) -> tuple:
    return create_error_response('CONFLICT', message, details)


def handle_engine_error(error: SequenceEngineError) -> tuple:
    """Answer with the engine error's own code and details."""
    if error.code in UPSTREAM_FAILURES:
        logger.error(f"{error.code}: {error.message}")
    else:
        logger.info(f"{error.code}: {error.message}")
    return create_error_response(error.code, error.message, error.details or None)


def handle_database_error(error: SQLAlchemyError, operation: str) -> tuple:
    logger.error(f"Database error during {operation}: {error}")

    if isinstance(error, IntegrityError):
        return create_error_response('CONFLICT', f"Conflicting write during {operation}")
    return create_error_response('DATABASE_ERROR', f"Database error during {operation}")


def handle_exception(error: Exception, operation: str = "operation") -> tuple:
    """
    Turn any exception raised by a route into an error envelope.

    Engine errors keep their code, database errors become CONFLICT or
    DATABASE_ERROR, and malformed input becomes VALIDATION_ERROR. Anything
    else is logged with its traceback and reported without its message.
    """
    if isinstance(error, SequenceEngineError):
        return handle_engine_error(error)
    if isinstance(error, HTTPException):
        return create_error_response('BAD_REQUEST', error.description, status_code=error.code)
    if isinstance(error, SQLAlchemyError):
        return handle_database_error(error, operation)
    if isinstance(error, (ValueError, TypeError)):
        return handle_validation_error(str(error))
    if isinstance(error, KeyError):
        return handle_validation_error(f"Missing required field: {error}")

    logger.error(f"Unexpected error during {operation}: {error}", exc_info=error)
    return create_error_response('INTERNAL_ERROR', f"An unexpected error occurred during {operation}")


def validate_required_fields(data: Dict[str, Any], required_fields: list) -> Optional[tuple]:
    """Return a VALIDATION_ERROR response naming every missing field, or None."""
    missing_fields = [field for field in required_fields if data.get(field) is None]
    if not missing_fields:
        return None

    return handle_validation_error(
        f"Missing required fields: {', '.join(missing_fields)}",
        {'missing_fields': missing_fields, 'required_fields': required_fields}
    )
