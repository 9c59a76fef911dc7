"""
Endpoint Discovery Models for BGuard Suite

Crawl sessions against an asset's domain and the endpoints they found.
"""

from datetime import datetime
from enum import Enum
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value


class DiscoveryStatus(Enum):
    PENDING = 'PENDING'
    SCANNING = 'SCANNING'
    CLASSIFYING = 'CLASSIFYING'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'

    @classmethod
    def active(cls):
        return (cls.PENDING, cls.SCANNING, cls.CLASSIFYING)


class EndpointType(Enum):
    LOGIN_PAGE = 'LOGIN_PAGE'
    AUTHENTICATION = 'AUTHENTICATION'
    ADMIN_PANEL = 'ADMIN_PANEL'
    API_ENDPOINT = 'API_ENDPOINT'
    FORM_SUBMISSION = 'FORM_SUBMISSION'
    FILE_UPLOAD = 'FILE_UPLOAD'
    DOWNLOAD = 'DOWNLOAD'
    SEARCH = 'SEARCH'
    USER_PROFILE = 'USER_PROFILE'
    STATIC_CONTENT = 'STATIC_CONTENT'
    DOCUMENTATION = 'DOCUMENTATION'
    ERROR_PAGE = 'ERROR_PAGE'
    REDIRECT = 'REDIRECT'
    HEALTH_CHECK = 'HEALTH_CHECK'
    METRICS = 'METRICS'
    WEBHOOK = 'WEBHOOK'
    CALLBACK = 'CALLBACK'
    OTHER = 'OTHER'


class EndpointSensitivity(Enum):
    PUBLIC = 'PUBLIC'
    INTERNAL = 'INTERNAL'
    RESTRICTED = 'RESTRICTED'
    CONFIDENTIAL = 'CONFIDENTIAL'
    HIGHLY_SENSITIVE = 'HIGHLY_SENSITIVE'


class EndpointRiskLevel(Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'


class EndpointDiscoverySession(db.Model):
    """A crawl of one domain on behalf of an application asset."""

    __tablename__ = 'endpoint_discovery_sessions'

    id = db.Column(db.Integer, primary_key=True)
    asset_id = db.Column(db.Integer, db.ForeignKey('application_assets.id'), nullable=False, index=True)
    domain = db.Column(db.String(253), nullable=False, index=True)
    start_url = db.Column(db.String(2048), nullable=False)
    status = db.Column(db.Enum(DiscoveryStatus), default=DiscoveryStatus.PENDING, index=True)
    progress = db.Column(db.Integer, default=0)

    max_depth = db.Column(db.Integer, default=3)
    include_subdomains = db.Column(db.Boolean, default=False)

    total_endpoints = db.Column(db.Integer, default=0)
    high_risk_count = db.Column(db.Integer, default=0)
    anomaly_count = db.Column(db.Integer, default=0)
    summary = db.Column(db.Text, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    _crawl_stats = db.Column('crawl_stats', db.Text, nullable=True)
    crawl_stats = json_text_property('_crawl_stats', default=dict)

    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    started_at = db.Column(db.DateTime, nullable=True)
    completed_at = db.Column(db.DateTime, nullable=True)

    endpoints = db.relationship('DiscoveredEndpoint', backref='session', lazy='dynamic',
                                cascade='all, delete-orphan')

    @property
    def is_active(self):
        return self.status in DiscoveryStatus.active()

    def start(self):
        self.status = DiscoveryStatus.SCANNING
        self.started_at = datetime.utcnow()
        self.progress = 10

    def complete(self, summary):
        self.status = DiscoveryStatus.COMPLETED
        self.summary = summary
        self.progress = 100
        self.completed_at = datetime.utcnow()

    def fail(self, error):
        self.status = DiscoveryStatus.FAILED
        self.error_message = str(error)[:1000]
        self.completed_at = datetime.utcnow()

    def to_dict(self):
        return {
            'id': self.id,
            'asset_id': self.asset_id,
            'domain': self.domain,
            'start_url': self.start_url,
            'status': enum_value(self.status),
            'progress': self.progress,
            'max_depth': self.max_depth,
            'include_subdomains': self.include_subdomains,
            'total_endpoints': self.total_endpoints,
            'high_risk_count': self.high_risk_count,
            'anomaly_count': self.anomaly_count,
            'summary': self.summary,
            'error_message': self.error_message,
            'crawl_stats': self.crawl_stats,
            'created_by': self.created_by,
            'created_at': isoformat(self.created_at),
            'started_at': isoformat(self.started_at),
            'completed_at': isoformat(self.completed_at),
        }


class DiscoveredEndpoint(db.Model):
    """An endpoint found during discovery, with its risk classification."""

    __tablename__ = 'discovered_endpoints'

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey('endpoint_discovery_sessions.id'),
                           nullable=False, index=True)
    url = db.Column(db.String(2048), nullable=False)
    method = db.Column(db.String(10), default='GET')
    path = db.Column(db.String(2048), nullable=False)
    status_code = db.Column(db.Integer, nullable=True)
    content_type = db.Column(db.String(200), nullable=True)
    response_size = db.Column(db.Integer, nullable=True)
    response_time = db.Column(db.Float, nullable=True)
    server_header = db.Column(db.String(200), nullable=True)
    depth = db.Column(db.Integer, default=0)
    parent_url = db.Column(db.String(2048), nullable=True)

    _query_params = db.Column('query_params', db.Text, nullable=True)
    query_params = json_text_property('_query_params')
    _security_headers = db.Column('security_headers', db.Text, nullable=True)
    security_headers = json_text_property('_security_headers', default=dict)
    _forms = db.Column('forms', db.Text, nullable=True)
    forms = json_text_property('_forms')

    endpoint_type = db.Column(db.Enum(EndpointType), default=EndpointType.OTHER, index=True)
    sensitivity = db.Column(db.Enum(EndpointSensitivity), default=EndpointSensitivity.INTERNAL)
    risk_score = db.Column(db.Float, default=5.0)
    risk_level = db.Column(db.Enum(EndpointRiskLevel), default=EndpointRiskLevel.MEDIUM, index=True)
    function_purpose = db.Column(db.Text, nullable=True)
    _security_concerns = db.Column('security_concerns', db.Text, nullable=True)
    security_concerns = json_text_property('_security_concerns')
    _data_exposure = db.Column('data_exposure', db.Text, nullable=True)
    data_exposure = json_text_property('_data_exposure')
    is_anomaly = db.Column(db.Boolean, default=False)
    anomaly_reason = db.Column(db.Text, nullable=True)
    anomaly_score = db.Column(db.Float, nullable=True)
    _classification = db.Column('classification', db.Text, nullable=True)
    classification = json_text_property('_classification', default=dict)
    discovery_method = db.Column(db.String(50), default='crawler')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'session_id': self.session_id,
            'url': self.url,
            'method': self.method,
            'path': self.path,
            'status_code': self.status_code,
            'content_type': self.content_type,
            'response_size': self.response_size,
            'response_time': self.response_time,
            'server_header': self.server_header,
            'depth': self.depth,
            'parent_url': self.parent_url,
            'query_params': self.query_params,
            'security_headers': self.security_headers,
            'forms': self.forms,
            'endpoint_type': enum_value(self.endpoint_type),
            'sensitivity': enum_value(self.sensitivity),
            'risk_score': self.risk_score,
            'risk_level': enum_value(self.risk_level),
            'function_purpose': self.function_purpose,
            'security_concerns': self.security_concerns,
            'data_exposure': self.data_exposure,
            'is_anomaly': self.is_anomaly,
            'anomaly_reason': self.anomaly_reason,
            'anomaly_score': self.anomaly_score,
            'classification': self.classification,
            'discovery_method': self.discovery_method,
        }
