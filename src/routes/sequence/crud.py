"""
Basic CRUD operations for sequences.

This module contains functionality for:
- Listing and creating sequences
- Getting a sequence with its current steps
- Updating sequence metadata
- Deleting (or archiving) sequences
"""

import logging
from flask import request, jsonify

from src.extensions import db
from src.services.sequence_engine import SequenceEngine
from src.utils.error_handling import handle_exception, handle_validation_error, validate_required_fields
from src.utils.tenant import get_request_org_id, get_request_user_id, ensure_org_access

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp

UPDATABLE_FIELDS = ('name', 'description', 'tags', 'settings')


@sequence_bp.route('/sequences', methods=['GET'])
def list_sequences():
    """List sequences of the request's org with enrollment and reply counts."""
    try:
        sequences = SequenceEngine().list_sequences(org_id=get_request_org_id())
        return jsonify({'sequences': sequences, 'total': len(sequences)}), 200

    except Exception as e:
        logger.error(f"Error listing sequences: {str(e)}")
        return handle_exception(e, "listing sequences")


@sequence_bp.route('/sequences', methods=['POST'])
def create_sequence():
    """Create a draft sequence with its steps."""
    try:
        data = request.get_json(silent=True)
        if not data:
            return handle_validation_error("Request body is required")

        error = validate_required_fields(data, ['name', 'steps'])
        if error:
            return error

        sequence = SequenceEngine().create_sequence(
            name=data['name'],
            steps=data['steps'],
            description=data.get('description'),
            tags=data.get('tags'),
            settings=data.get('settings'),
            org_id=get_request_org_id(),
            user_id=get_request_user_id()
        )

        return jsonify({
            'message': 'Sequence created successfully',
            'sequence': sequence.to_dict(include_steps=True)
        }), 201

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "creating sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['GET'])
def get_sequence(sequence_id):
    """Get a sequence with its current steps."""
    try:
        engine = SequenceEngine()
        sequence = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        return jsonify({'sequence': sequence.to_dict(include_steps=True)}), 200

    except Exception as e:
        return handle_exception(e, "getting sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['PATCH'])
def update_sequence(sequence_id):
    """Update a sequence's name, description, tags or settings."""
    try:
        data = request.get_json(silent=True) or {}
        fields = {key: data[key] for key in UPDATABLE_FIELDS if key in data}
        if not fields:
            return handle_validation_error(
                "No updatable fields provided",
                {'updatable_fields': list(UPDATABLE_FIELDS)}
            )

        engine = SequenceEngine()
        ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        sequence = engine.update_sequence(sequence_id, **fields)

        return jsonify({
            'message': 'Sequence updated successfully',
            'sequence': sequence.to_dict(include_steps=True)
        }), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "updating sequence")


@sequence_bp.route('/sequences/<sequence_id>', methods=['DELETE'])
def delete_sequence(sequence_id):
    """Delete a sequence; sequences with enrollments are archived instead."""
    try:
        engine = SequenceEngine()
        ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        result = engine.delete_sequence(sequence_id)

        message = 'Sequence archived (it has enrollments)' if result['archived'] else 'Sequence deleted successfully'
        return jsonify(dict(result, message=message)), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "deleting sequence")
