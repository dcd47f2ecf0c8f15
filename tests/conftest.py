"""
Pytest configuration and fixtures for Outreach Sequence API tests.

This module provides:
- Test database setup and teardown
- Flask test client
- A controllable clock and a mock AI gateway
- Mock external services
- Common test data
"""

import pytest
from datetime import datetime, timedelta
from unittest.mock import Mock, patch

from src.main import create_app
from src.extensions import db
from src.models import Contact
from src.services.sequence_engine import SequenceEngine

# A Monday morning, UTC
BASE_TIME = datetime(2026, 3, 2, 9, 0, 0)

TEMPLATE_STEPS = [
    {
        "step_number": 1,
        "channel": "social",
        "delay_days": 0,
        "body_template": "Hi {{first_name}}, loved the recent news from {{company_name}}.",
        "ai_personalization": False
    },
    {
        "step_number": 2,
        "channel": "call",
        "delay_days": 2,
        "body_template": "Call {{full_name}} about {{company_name}}.",
        "ai_personalization": False
    },
    {
        "step_number": 3,
        "channel": "task",
        "delay_days": 5,
        "body_template": "Send {{first_name}} the case study.",
        "ai_personalization": False
    }
]

AI_EMAIL_STEP = {
    "step_number": 1,
    "channel": "email",
    "delay_days": 0,
    "subject_template": "Idea for {{company_name}}",
    "ai_personalization": True,
    "ai_prompt": "Mention their role."
}

GENERATED_EMAIL = {
    "subject": "Quick idea, Ada",
    "body": "Ada, saw Analytical Engines is hiring. Worth a 15-minute chat Thursday?",
    "channel": "email"
}


class FakeClock:
    """Naive-UTC clock that only moves when a test moves it."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def app():
    """Create and configure a new app instance for each test."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Database session for tests."""
    yield db.session


@pytest.fixture
def clock():
    return FakeClock(BASE_TIME)


@pytest.fixture
def ai_gateway():
    """Mock AI gateway returning fixed email content."""
    gateway = Mock()
    gateway.generate_step_content.return_value = dict(GENERATED_EMAIL)
    return gateway


@pytest.fixture
def engine(app, clock, ai_gateway):
    """Sequence engine with a fixed clock and the mock AI gateway."""
    return SequenceEngine(ai_gateway=ai_gateway, clock=clock)


@pytest.fixture
def make_contact(db_session):
    """Factory for contacts."""
    counter = {'n': 0}

    def _make_contact(**overrides):
        counter['n'] += 1
        fields = {
            'first_name': 'Ada',
            'last_name': 'Lovelace',
            'email': f"ada{counter['n']}@example.com",
            'title': 'CTO',
            'company_name': 'Analytical Engines',
            'industry': 'Computing',
            'notes': 'Spoke at a compiler conference last month'
        }
        fields.update(overrides)
        contact = Contact(**fields)
        db_session.add(contact)
        db_session.commit()
        return contact

    return _make_contact


@pytest.fixture
def contact(make_contact):
    return make_contact()


@pytest.fixture
def make_sequence(engine):
    """Factory for sequences, activated unless ``status`` says otherwise."""

    def _make_sequence(steps=None, status='active', name='Q2 outbound', **kwargs):
        sequence = engine.create_sequence(
            name=name,
            steps=[dict(step) for step in (steps or TEMPLATE_STEPS)],
            **kwargs
        )
        if status != 'draft':
            engine.set_sequence_status(sequence.id, status)
        return sequence

    return _make_sequence


@pytest.fixture
def mock_resend(app):
    """Mock Resend email service for testing."""
    app.config['RESEND_API_KEY'] = 'test-resend-key'
    with patch('src.services.sequence_engine.action_executor.resend') as mock_resend:
        mock_resend.Emails.send.return_value = {"id": "email-123"}
        yield mock_resend


@pytest.fixture
def json_headers():
    """Headers for JSON requests."""
    return {
        'Content-Type': 'application/json'
    }
