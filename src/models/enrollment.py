import uuid
from datetime import datetime
from src.models import db
from sqlalchemy import JSON, Index, text

ENROLLMENT_STATUSES = ('active', 'paused', 'completed', 'replied', 'bounced', 'opted_out', 'removed')


class SequenceEnrollment(db.Model):
    __tablename__ = 'sequence_enrollments'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    sequence_id = db.Column(db.String(36), db.ForeignKey('sequences.id'), nullable=False, index=True)
    contact_id = db.Column(db.String(36), db.ForeignKey('contacts.id'), nullable=False, index=True)
    org_id = db.Column(db.String(36), nullable=True, index=True)
    user_id = db.Column(db.String(36), nullable=True)
    status = db.Column(db.String(50), nullable=False, default='active')
    # Status options: active, paused, completed, replied, bounced, opted_out, removed
    current_step = db.Column(db.Integer, nullable=False, default=1)  # 1-based pointer into the pinned version
    sequence_version = db.Column(db.Integer, nullable=False, default=1)
    revision = db.Column(db.Integer, nullable=False, default=0)  # Bumped by every claimed advance
    enrolled_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    paused_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)
    last_activity_at = db.Column(db.DateTime, nullable=True)
    meta_json = db.Column('metadata', JSON, nullable=True)

    # Relationships
    contact = db.relationship('Contact', lazy=True)
    executions = db.relationship('StepExecution', backref='enrollment', lazy=True, cascade='all, delete-orphan')
    events = db.relationship('Event', backref='enrollment', lazy=True, cascade='all, delete-orphan')

    # Only one live enrollment per (sequence, contact); removed rows may pile up
    __table_args__ = (
        Index(
            'uq_enrollment_sequence_contact_live',
            'sequence_id', 'contact_id',
            unique=True,
            sqlite_where=text("status != 'removed'"),
            postgresql_where=text("status != 'removed'"),
        ),
    )

    def to_dict(self, include_contact=False):
        data = {
            'id': str(self.id),
            'sequence_id': str(self.sequence_id),
            'contact_id': str(self.contact_id),
            'org_id': self.org_id,
            'user_id': self.user_id,
            'status': self.status,
            'current_step': self.current_step,
            'sequence_version': self.sequence_version,
            'enrolled_at': self.enrolled_at.isoformat() if self.enrolled_at else None,
            'paused_at': self.paused_at.isoformat() if self.paused_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'last_activity_at': self.last_activity_at.isoformat() if self.last_activity_at else None,
            'metadata': self.meta_json or {}
        }
        if include_contact:
            data['contact'] = self.contact.to_summary() if self.contact else None
        return data

    def __repr__(self):
        return f'<SequenceEnrollment {self.contact_id} in {self.sequence_id} ({self.status})>'
