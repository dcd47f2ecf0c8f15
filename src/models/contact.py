import uuid
from datetime import datetime
from src.models import db


class Contact(db.Model):
    """Read-only mirror of the CRM contact record.

    The sequence engine only ever reads contacts: enrollments hold the id and
    the AI gateway receives the fields below.
    """
    __tablename__ = 'contacts'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    org_id = db.Column(db.String(36), nullable=True, index=True)
    first_name = db.Column(db.String(100), nullable=True)
    last_name = db.Column(db.String(100), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    title = db.Column(db.String(255), nullable=True)
    company_name = db.Column(db.String(255), nullable=True)
    industry = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @property
    def full_name(self):
        if self.first_name and self.last_name:
            return f"{self.first_name} {self.last_name}"
        elif self.first_name:
            return self.first_name
        elif self.last_name:
            return self.last_name
        return "Unknown"

    def to_summary(self):
        return {
            'id': str(self.id),
            'first_name': self.first_name,
            'last_name': self.last_name,
            'email': self.email,
            'title': self.title,
            'status': self.status
        }

    def to_dict(self):
        data = self.to_summary()
        data.update({
            'org_id': self.org_id,
            'company_name': self.company_name,
            'industry': self.industry,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None
        })
        return data

    def __repr__(self):
        return f'<Contact {self.full_name}>'
