"""
Sequence management operations.

This module contains functionality for:
- Replacing a sequence's steps (a new immutable version)
- Changing a sequence's status (activate, pause, archive, back to draft)
"""

import logging
from flask import request, jsonify

from src.extensions import db
from src.services.sequence_engine import SequenceEngine
from src.utils.error_handling import handle_exception, handle_validation_error
from src.utils.tenant import ensure_org_access

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/<sequence_id>/steps', methods=['PUT'])
def replace_sequence_steps(sequence_id):
    """Replace all steps of a sequence. Running enrollments keep their version."""
    try:
        data = request.get_json(silent=True)
        if not data or 'steps' not in data:
            return handle_validation_error("Steps are required")

        engine = SequenceEngine()
        sequence = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        steps = engine.replace_steps(sequence_id, data['steps'])

        return jsonify({
            'message': 'Sequence steps replaced successfully',
            'sequence_id': sequence_id,
            'version': sequence.current_version,
            'steps': [step.to_dict() for step in steps]
        }), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "replacing sequence steps")


@sequence_bp.route('/sequences/<sequence_id>/status', methods=['POST'])
def set_sequence_status(sequence_id):
    """Change a sequence's status."""
    try:
        data = request.get_json(silent=True)
        if not data or not data.get('status'):
            return handle_validation_error("Status is required")

        engine = SequenceEngine()
        previous = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id).status
        sequence = engine.set_sequence_status(sequence_id, data['status'])

        logger.info(f"Sequence {sequence_id} status set to {sequence.status} via API")
        return jsonify({
            'message': f"Sequence is {sequence.status}",
            'previous_status': previous,
            'sequence': sequence.to_dict()
        }), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "changing sequence status")
