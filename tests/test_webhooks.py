"""
Unit tests for the Resend webhook.
"""

import hashlib
import hmac
import json

import pytest

from src.models import StepExecution, WebhookData
from src.routes.webhook.resend import verify_webhook_signature

pytestmark = pytest.mark.integration

WEBHOOK_URL = '/api/v1/webhooks/resend'


def _sign(body, secret):
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


@pytest.fixture
def sent_execution(engine, make_sequence, contact):
    """A sent step execution and its dispatch ref."""
    sequence = make_sequence()
    engine.enroll(sequence.id, [contact.id])
    engine.process_due()
    execution = StepExecution.query.filter_by(status='sent').one()
    return execution.id, execution.dispatch_ref


class TestResendWebhook:
    """Test cases for POST /webhooks/resend."""

    def test_opened_event(self, client, sent_execution):
        execution_id, dispatch_ref = sent_execution

        response = client.post(WEBHOOK_URL, json={'type': 'email.opened', 'data': {'email_id': dispatch_ref}})

        assert response.status_code == 200
        result = json.loads(response.data)['result']
        assert result['status'] == 'opened'
        assert result['execution_id'] == execution_id

        webhook = WebhookData.query.one()
        assert webhook.processed is True
        assert webhook.dispatch_ref == dispatch_ref
        assert webhook.signature_valid is None

    def test_complaint_opts_out(self, client, sent_execution):
        _, dispatch_ref = sent_execution

        response = client.post(WEBHOOK_URL, json={'type': 'email.complained', 'data': {'email_id': dispatch_ref}})

        assert json.loads(response.data)['result']['enrollment_status'] == 'opted_out'

    def test_unhandled_event_type(self, client):
        response = client.post(WEBHOOK_URL, json={'type': 'email.delivered', 'data': {'email_id': 'email-1'}})

        assert response.status_code == 200
        assert json.loads(response.data)['result'] == {'ignored': True, 'reason': 'unhandled_event_type'}
        assert WebhookData.query.one().processed is True

    def test_missing_email_id(self, client):
        response = client.post(WEBHOOK_URL, json={'type': 'email.opened', 'data': {}})
        assert json.loads(response.data)['result']['reason'] == 'missing_email_id'

    def test_unknown_email_id(self, client):
        response = client.post(WEBHOOK_URL, json={'type': 'email.clicked', 'data': {'email_id': 'not-ours'}})

        assert response.status_code == 200
        assert json.loads(response.data)['result']['reason'] == 'unknown_email_id'

    def test_invalid_json(self, client):
        response = client.post(WEBHOOK_URL, data='not json', content_type='application/json')

        assert response.status_code == 400
        assert json.loads(response.data)['error']['code'] == 'WEBHOOK_ERROR'
        assert WebhookData.query.count() == 0

    def test_signature_required_when_secret_configured(self, app, client, sent_execution):
        _, dispatch_ref = sent_execution
        app.config['RESEND_WEBHOOK_SECRET'] = 'whsec-test'
        body = json.dumps({'type': 'email.opened', 'data': {'email_id': dispatch_ref}}).encode('utf-8')

        rejected = client.post(WEBHOOK_URL, data=body, content_type='application/json',
                               headers={'X-Webhook-Signature': 'sha256=deadbeef'})
        accepted = client.post(WEBHOOK_URL, data=body, content_type='application/json',
                               headers={'X-Webhook-Signature': f"sha256={_sign(body, 'whsec-test')}"})

        assert rejected.status_code == 401
        assert accepted.status_code == 200
        assert WebhookData.query.one().signature_valid is True


class TestVerifyWebhookSignature:
    """Test cases for verify_webhook_signature."""

    def test_prefixed_and_bare_signatures(self):
        body = b'{"type": "email.opened"}'
        signature = _sign(body, 'secret')

        assert verify_webhook_signature(body, f'sha256={signature}', 'secret') is True
        assert verify_webhook_signature(body, signature, 'secret') is True

    def test_wrong_signature(self):
        body = b'{"type": "email.opened"}'
        assert verify_webhook_signature(body, _sign(body, 'other'), 'secret') is False

    def test_missing_header_or_secret(self):
        assert verify_webhook_signature(b'{}', None, 'secret') is False
        assert verify_webhook_signature(b'{}', 'abc', None) is False
