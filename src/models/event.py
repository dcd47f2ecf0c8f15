import uuid
from datetime import datetime
from src.models import db
from sqlalchemy import JSON


class Event(db.Model):
    __tablename__ = 'events'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    enrollment_id = db.Column(db.String(36), db.ForeignKey('sequence_enrollments.id'), nullable=True, index=True)
    execution_id = db.Column(db.String(36), nullable=True, index=True)
    event_type = db.Column(db.String(50), nullable=False)
    # Event types: enrolled, step_scheduled, step_sent, step_failed, step_skipped,
    # content_generated, generation_failed, engagement_<signal>, enrollment_<status>
    timestamp = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    meta_json = db.Column(JSON, nullable=True)

    def to_dict(self):
        return {
            'id': str(self.id),
            'enrollment_id': self.enrollment_id,
            'execution_id': self.execution_id,
            'event_type': self.event_type,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'meta_json': self.meta_json
        }

    def __repr__(self):
        return f'<Event {self.event_type} for Enrollment {self.enrollment_id}>'
