"""
Resend webhook handler.

This module contains the email engagement webhook:
- Signature verification
- Raw payload storage
- Mapping Resend event types onto engagement signals
"""

import hashlib
import hmac
import json
import logging
from flask import request, jsonify, current_app

from src.models import db, WebhookData
from src.routes.webhook import webhook_bp
from src.services.sequence_engine import SequenceEngine, NotFoundError
from src.utils.error_handling import create_error_response, handle_exception

logger = logging.getLogger(__name__)

# Resend event type -> engagement signal
RESEND_EVENT_SIGNALS = {
    'email.opened': 'opened',
    'email.clicked': 'clicked',
    'email.bounced': 'bounced',
    'email.complained': 'opted_out',
}


def verify_webhook_signature(payload_body, signature_header, secret):
    """Verify an HMAC-SHA256 webhook signature (``sha256=<hex>`` or bare hex)."""
    if not signature_header or not secret:
        return False

    try:
        expected_signature = hmac.new(
            secret.encode('utf-8'),
            payload_body,
            hashlib.sha256
        ).hexdigest()
        provided = signature_header[len('sha256='):] if signature_header.startswith('sha256=') else signature_header
        return hmac.compare_digest(expected_signature, provided)
    except Exception as e:
        logger.error(f"Signature verification error: {str(e)}")
        return False


@webhook_bp.route('/resend', methods=['POST'])
def resend_webhook():
    """Handle a Resend email event."""
    raw_body = request.get_data()
    secret = current_app.config.get('RESEND_WEBHOOK_SECRET')

    signature_valid = None
    if secret:
        signature_valid = verify_webhook_signature(raw_body, request.headers.get('X-Webhook-Signature'), secret)
        if not signature_valid:
            logger.warning("Rejected Resend webhook with an invalid signature")
            return create_error_response('UNAUTHORIZED', "Invalid webhook signature", status_code=401)

    try:
        payload = json.loads(raw_body or b'{}')
    except ValueError:
        return create_error_response('WEBHOOK_ERROR', "Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        return create_error_response('WEBHOOK_ERROR', "Webhook body must be a JSON object")

    event_type = payload.get('type')
    data = payload.get('data') or {}
    dispatch_ref = data.get('email_id') if isinstance(data, dict) else None

    webhook = WebhookData(
        source='resend',
        event_type=event_type,
        dispatch_ref=dispatch_ref,
        payload=payload,
        signature_valid=signature_valid
    )

    try:
        db.session.add(webhook)
        db.session.commit()

        signal = RESEND_EVENT_SIGNALS.get(event_type)
        if not signal:
            logger.info(f"Ignoring Resend event type: {event_type}")
            result = {'ignored': True, 'reason': 'unhandled_event_type'}
        elif not dispatch_ref:
            logger.warning(f"Resend {event_type} event without an email id")
            result = {'ignored': True, 'reason': 'missing_email_id'}
        else:
            try:
                result = SequenceEngine().record_engagement_by_ref(dispatch_ref, signal)
            except NotFoundError:
                # Emails not sent by a sequence step (or already purged)
                logger.info(f"No step execution for Resend email {dispatch_ref}")
                result = {'ignored': True, 'reason': 'unknown_email_id'}

        webhook.processed = True
        webhook.result = result
        db.session.commit()

        logger.info(f"Processed Resend webhook {event_type} for {dispatch_ref}: {result}")
        return jsonify({'message': 'Webhook processed', 'event_type': event_type, 'result': result}), 200

    except Exception as e:
        db.session.rollback()
        logger.error(f"Error processing Resend webhook: {str(e)}")
        return handle_exception(e, "processing webhook")
