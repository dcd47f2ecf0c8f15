from datetime import datetime
from src.extensions import db
from sqlalchemy import JSON
import uuid


class WebhookData(db.Model):
    """Raw inbound provider webhook, kept for replay and debugging."""
    __tablename__ = 'webhook_data'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    received_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    source = db.Column(db.String(50), nullable=False)  # e.g. resend
    event_type = db.Column(db.String(100), nullable=True)
    dispatch_ref = db.Column(db.String(255), nullable=True, index=True)
    payload = db.Column(JSON, nullable=True)
    signature_valid = db.Column(db.Boolean, nullable=True)
    processed = db.Column(db.Boolean, nullable=False, default=False)
    result = db.Column(JSON, nullable=True)

    def to_dict(self):
        return {
            'id': self.id,
            'received_at': self.received_at.isoformat() if self.received_at else None,
            'source': self.source,
            'event_type': self.event_type,
            'dispatch_ref': self.dispatch_ref,
            'payload': self.payload,
            'signature_valid': self.signature_valid,
            'processed': self.processed,
            'result': self.result
        }

    def __repr__(self):
        return f'<WebhookData {self.source}:{self.event_type}>'
