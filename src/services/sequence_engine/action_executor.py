"""
Channel dispatch.

Email goes out through Resend. Social, call and task steps are carried out
by a person: dispatching them hands the prepared content to the operator
queue and counts as sent.
"""

import logging
from typing import Dict, Any
import resend

from .errors import DispatchFailure

logger = logging.getLogger(__name__)

MANUAL_CHANNELS = ('social', 'call', 'task')


def _dispatch(self, execution, step, contact, content: Dict[str, Any]) -> str:
    """Send one execution on its step's channel and return the provider reference."""
    channel = step.channel

    if channel == 'email':
        return self._send_email(execution, contact, content)
    if channel in MANUAL_CHANNELS:
        return self._hand_off_manual(execution, step, contact, content)

    raise DispatchFailure(f"Unknown channel '{channel}'", {'channel': channel})


def _send_email(self, execution, contact, content: Dict[str, Any]) -> str:
    """Send an email step via Resend."""
    if contact is None or not contact.email:
        raise DispatchFailure("Contact has no email address", {'execution_id': execution.id})

    body = content.get('body')
    if not body:
        raise DispatchFailure("Email body is empty", {'execution_id': execution.id})

    api_key = self._config('RESEND_API_KEY')
    if not api_key:
        raise DispatchFailure("Email channel is not configured (RESEND_API_KEY missing)")

    resend.api_key = api_key
    try:
        response = resend.Emails.send({
            "from": self._config('OUTREACH_EMAIL_FROM', 'outreach@example.com'),
            "to": [contact.email],
            "subject": content.get('subject') or '',
            "text": body,
            # Stops mail clients threading separate touches together
            "headers": {"X-Entity-Ref-ID": str(execution.id)},
            "tags": [{"name": "execution_id", "value": str(execution.id)}]
        })
    except Exception as e:
        logger.error(f"Resend send failed for execution {execution.id}: {str(e)}")
        raise DispatchFailure(f"Email send failed: {str(e)}", {'execution_id': execution.id}) from e

    message_id = response.get('id') if response else None
    if not message_id:
        raise DispatchFailure("Email provider returned no message id", {'execution_id': execution.id})

    logger.info(f"Email for execution {execution.id} sent to {contact.email}: {message_id}")
    return message_id


def _hand_off_manual(self, execution, step, contact, content: Dict[str, Any]) -> str:
    """Queue a manual touch (social/call/task) for the operator."""
    contact_name = contact.full_name if contact is not None else 'unknown contact'
    logger.info(f"Handed off {step.channel} step {step.step_number} for {contact_name} (execution {execution.id})")
    return f"manual:{execution.id}"
