"""
Sequence validation.

This module contains functionality for:
- Validating a step list without saving it
- The example sequence
"""

import logging
from flask import request, jsonify

from src.services.sequence_engine import SequenceEngine, EXAMPLE_SEQUENCE
from src.utils.error_handling import handle_exception, handle_validation_error

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/validate', methods=['POST'])
def validate_sequence():
    """Validate a step list."""
    try:
        data = request.get_json(silent=True)
        if not data or 'steps' not in data:
            return handle_validation_error("Steps are required")

        result = SequenceEngine().validate_steps(data['steps'])

        return jsonify({
            'valid': result['valid'],
            'errors': result.get('errors', []),
            'warnings': result.get('warnings', []),
            'schedule': result.get('schedule', [])
        }), 200

    except Exception as e:
        logger.error(f"Error validating sequence: {str(e)}")
        return handle_exception(e, "validating sequence")


@sequence_bp.route('/sequences/example', methods=['GET'])
def get_example_sequence():
    """Get an example sequence definition."""
    return jsonify({
        'example_sequence': EXAMPLE_SEQUENCE,
        'description': 'Example 3-step outreach sequence: email, social touch, call'
    }), 200
