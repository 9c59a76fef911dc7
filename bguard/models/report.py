"""
Report Model for BGuard Suite

Generated PDF and Excel exports of a threat model.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import isoformat, enum_value


class ReportFormat(Enum):
    PDF = 'PDF'
    EXCEL = 'EXCEL'

    @property
    def mimetype(self):
        if self is ReportFormat.PDF:
            return 'application/pdf'
        return 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

    @property
    def extension(self):
        return 'pdf' if self is ReportFormat.PDF else 'xlsx'


class Report(db.Model):
    """
    A generated report.

    The rendered document is stored with the row; deletion is soft.
    """

    __tablename__ = 'reports'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    format = db.Column(db.Enum(ReportFormat), nullable=False)
    content = db.Column(db.LargeBinary, nullable=False)
    file_size = db.Column(db.Integer, default=0)

    threat_model_id = db.Column(db.Integer, db.ForeignKey('threat_models.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    download_count = db.Column(db.Integer, default=0)
    last_downloaded = db.Column(db.DateTime, nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)
    deleted_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def __init__(self, threat_model, report_format, content, user_id=None):
        self.threat_model_id = threat_model.id
        self.organization_id = threat_model.organization_id
        self.name = f"{threat_model.name} - {report_format.value} Report"
        self.format = report_format
        self.content = content
        self.file_size = len(content)
        self.user_id = user_id
        self.download_count = 0

    @property
    def filename(self):
        safe = ''.join(c if c.isalnum() or c in ('-', '_') else '_' for c in self.name)
        return f"{safe}.{self.format.extension}"

    def record_download(self):
        self.download_count = (self.download_count or 0) + 1
        self.last_downloaded = datetime.utcnow()

    def soft_delete(self, user_id):
        self.deleted_at = datetime.utcnow()
        self.deleted_by = user_id

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'format': enum_value(self.format),
            'file_size': self.file_size,
            'threat_model_id': self.threat_model_id,
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'download_count': self.download_count,
            'last_downloaded': isoformat(self.last_downloaded),
            'created_at': isoformat(self.created_at),
        }
