"""
Enrollment endpoints.

This module contains functionality for:
- Enrolling contacts into a sequence
- Listing a sequence's enrollments
- Operator status changes (pause, resume, mark replied, remove)
- Execution history and content preview for an enrollment
"""

import logging
from flask import request, jsonify

from src.extensions import db
from src.services.sequence_engine import SequenceEngine
from src.utils.error_handling import handle_exception, handle_validation_error
from src.utils.tenant import get_request_org_id, get_request_user_id, ensure_org_access

logger = logging.getLogger(__name__)

# Import the blueprint from the package
from . import sequence_bp


@sequence_bp.route('/sequences/<sequence_id>/enroll', methods=['POST'])
def enroll_contacts(sequence_id):
    """Enroll contacts into a sequence; already-enrolled contacts are skipped."""
    try:
        data = request.get_json(silent=True)
        if not data or 'contact_ids' not in data:
            return handle_validation_error("contact_ids is required")

        contact_ids = data['contact_ids']
        if not isinstance(contact_ids, list) or not all(isinstance(c, str) for c in contact_ids):
            return handle_validation_error("contact_ids must be a list of contact ids")

        engine = SequenceEngine()
        sequence = ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)
        result = engine.enroll(
            sequence_id,
            contact_ids,
            org_id=get_request_org_id() or sequence.org_id,
            user_id=get_request_user_id()
        )

        return jsonify(dict(result, message=f"Enrolled {result['enrolled']} contact(s)")), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "enrolling contacts")


@sequence_bp.route('/sequences/<sequence_id>/enrollments', methods=['GET'])
def list_enrollments(sequence_id):
    """List a sequence's enrollments with contact summaries."""
    try:
        engine = SequenceEngine()
        ensure_org_access(engine.get_sequence(sequence_id), "Sequence", sequence_id)

        status = request.args.get('status')
        enrollments = engine.get_enrollments(sequence_id)
        if status:
            enrollments = [e for e in enrollments if e.status == status]

        return jsonify({
            'sequence_id': sequence_id,
            'enrollments': [e.to_dict(include_contact=True) for e in enrollments],
            'total': len(enrollments)
        }), 200

    except Exception as e:
        return handle_exception(e, "listing enrollments")


@sequence_bp.route('/enrollments/<enrollment_id>/status', methods=['POST'])
def set_enrollment_status(enrollment_id):
    """Pause, resume, mark replied, remove, ... an enrollment."""
    try:
        data = request.get_json(silent=True)
        if not data or not data.get('status'):
            return handle_validation_error("Status is required")

        engine = SequenceEngine()
        ensure_org_access(engine.get_enrollment(enrollment_id), "Enrollment", enrollment_id)
        result = engine.set_enrollment_status(enrollment_id, data['status'])

        response = {
            'changed': result['changed'],
            'previous_status': result.get('previous_status'),
            'enrollment': result['enrollment'].to_dict(include_contact=True)
        }
        if 'advance' in result:
            response['advance'] = result['advance']
        return jsonify(response), 200

    except Exception as e:
        db.session.rollback()
        return handle_exception(e, "changing enrollment status")


@sequence_bp.route('/enrollments/<enrollment_id>/executions', methods=['GET'])
def list_executions(enrollment_id):
    """Execution history of an enrollment."""
    try:
        engine = SequenceEngine()
        enrollment = ensure_org_access(engine.get_enrollment(enrollment_id), "Enrollment", enrollment_id)
        executions = engine.get_executions(enrollment_id)

        return jsonify({
            'enrollment': enrollment.to_dict(include_contact=True),
            'executions': [execution.to_dict(include_step=True) for execution in executions],
            'total': len(executions)
        }), 200

    except Exception as e:
        return handle_exception(e, "listing executions")


@sequence_bp.route('/enrollments/<enrollment_id>/preview', methods=['GET'])
def preview_enrollment_step(enrollment_id):
    """Content the enrollment's current step would send. Nothing is saved."""
    try:
        engine = SequenceEngine()
        ensure_org_access(engine.get_enrollment(enrollment_id), "Enrollment", enrollment_id)
        preview = engine.preview_step(enrollment_id)

        if preview is None:
            return jsonify({'enrollment_id': enrollment_id, 'preview': None,
                            'message': 'Enrollment has no step left to preview'}), 200
        return jsonify({'enrollment_id': enrollment_id, 'preview': preview}), 200

    except Exception as e:
        return handle_exception(e, "previewing step")
