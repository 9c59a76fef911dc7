"""
Settings and Statistics Models for BGuard Suite
"""

from datetime import datetime, date
from bguard import db
from bguard.models.base import isoformat


class SlaSettings(db.Model):
    """Remediation deadlines (in days) per finding severity, per user."""

    __tablename__ = 'sla_settings'

    DEFAULTS = {'critical': 7, 'high': 30, 'medium': 90, 'low': 180}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), unique=True, nullable=False)
    critical = db.Column(db.Integer, nullable=False, default=7)
    high = db.Column(db.Integer, nullable=False, default=30)
    medium = db.Column(db.Integer, nullable=False, default=90)
    low = db.Column(db.Integer, nullable=False, default=180)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def validate(cls, data):
        """
        Validate a full set of SLA values.

        All four are required, each 1-365 days, strictly increasing from
        critical to low.
        """
        values = {}
        for level in ('critical', 'high', 'medium', 'low'):
            raw = data.get(level)
            if raw is None or raw == '':
                raise ValueError("All SLA values are required")
            try:
                value = int(raw)
            except (TypeError, ValueError):
                raise ValueError("SLA values must be integers")
            if value < 1 or value > 365:
                raise ValueError("SLA values must be between 1 and 365 days")
            values[level] = value
        if not values['critical'] < values['high'] < values['medium'] < values['low']:
            raise ValueError("SLA values must increase from critical to low")
        return values

    def days_for(self, severity):
        return getattr(self, severity.lower())

    def to_dict(self):
        return {
            'critical': self.critical,
            'high': self.high,
            'medium': self.medium,
            'low': self.low,
            'updated_at': isoformat(self.updated_at),
        }


class AdminStats(db.Model):
    """Daily platform usage snapshot."""

    __tablename__ = 'admin_stats'

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, unique=True, nullable=False, index=True)
    total_users = db.Column(db.Integer, default=0)
    total_threat_models = db.Column(db.Integer, default=0)
    total_findings = db.Column(db.Integer, default=0)
    total_reports = db.Column(db.Integer, default=0)
    api_calls = db.Column(db.Integer, default=0)

    @classmethod
    def for_today(cls):
        today = date.today()
        row = cls.query.filter_by(date=today).first()
        if row is None:
            row = cls(date=today, api_calls=0)
            db.session.add(row)
        return row

    @classmethod
    def snapshot(cls, api_calls=0):
        """Refresh today's totals from the live tables; the caller commits."""
        from bguard.models.user import User
        from bguard.models.threat_model import ThreatModel, Finding
        from bguard.models.report import Report

        row = cls.for_today()
        row.total_users = User.query.count()
        row.total_threat_models = ThreatModel.query.count()
        row.total_findings = Finding.query.count()
        row.total_reports = Report.query.filter(Report.deleted_at.is_(None)).count()
        row.api_calls = (row.api_calls or 0) + api_calls
        return row

    def to_dict(self):
        return {
            'date': self.date.isoformat(),
            'total_users': self.total_users,
            'total_threat_models': self.total_threat_models,
            'total_findings': self.total_findings,
            'total_reports': self.total_reports,
            'api_calls': self.api_calls,
        }
