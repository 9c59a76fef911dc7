"""
Third-Party Review Model for BGuard Suite

Security posture reviews of vendor web applications.
"""

from datetime import datetime
from enum import Enum
from urllib.parse import urlparse
from bguard import db
from bguard.models.base import json_text_property, isoformat, enum_value
from bguard.models.asset import BusinessCriticality, DataClassification
from bguard.models.design_review import SecurityGrade, RiskLevel


class ThirdPartyReviewStatus(Enum):
    PENDING = 'PENDING'
    IN_PROGRESS = 'IN_PROGRESS'
    COMPLETED = 'COMPLETED'
    FAILED = 'FAILED'


class ScanFrequency(Enum):
    MANUAL = 'MANUAL'
    WEEKLY = 'WEEKLY'
    MONTHLY = 'MONTHLY'
    QUARTERLY = 'QUARTERLY'
    YEARLY = 'YEARLY'


class ThirdPartyReview(db.Model):
    """A vendor application under periodic security review."""

    __tablename__ = 'third_party_reviews'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    application_url = db.Column(db.String(2048), nullable=False)
    vendor = db.Column(db.String(200), nullable=True, index=True)
    application_category = db.Column(db.String(100), nullable=True)
    business_purpose = db.Column(db.Text, nullable=True)
    business_owner = db.Column(db.String(200), nullable=True)
    technical_contact = db.Column(db.String(200), nullable=True)
    data_processing_agreement = db.Column(db.Boolean, default=False)
    data_classification = db.Column(db.Enum(DataClassification), default=DataClassification.INTERNAL)
    business_criticality = db.Column(db.Enum(BusinessCriticality), default=BusinessCriticality.MEDIUM)

    _data_types = db.Column('data_types', db.Text, nullable=True)
    data_types = json_text_property('_data_types')

    status = db.Column(db.Enum(ThirdPartyReviewStatus), default=ThirdPartyReviewStatus.PENDING, index=True)
    scan_frequency = db.Column(db.Enum(ScanFrequency), default=ScanFrequency.MANUAL)

    overall_score = db.Column(db.Integer, nullable=True)
    security_grade = db.Column(db.Enum(SecurityGrade), nullable=True, index=True)
    risk_level = db.Column(db.Enum(RiskLevel), nullable=True, index=True)
    tls_grade = db.Column(db.String(3), nullable=True)
    headers_score = db.Column(db.Integer, nullable=True)
    privacy_policy_status = db.Column(db.String(20), nullable=True)
    terms_of_service_status = db.Column(db.String(20), nullable=True)

    _security_headers = db.Column('security_headers', db.Text, nullable=True)
    security_headers = json_text_property('_security_headers', default=dict)
    _cookie_analysis = db.Column('cookie_analysis', db.Text, nullable=True)
    cookie_analysis = json_text_property('_cookie_analysis', default=dict)
    _security_findings = db.Column('security_findings', db.Text, nullable=True)
    security_findings = json_text_property('_security_findings')
    _recommendations = db.Column('recommendations', db.Text, nullable=True)
    recommendations = json_text_property('_recommendations')
    _risk_factors = db.Column('risk_factors', db.Text, nullable=True)
    risk_factors = json_text_property('_risk_factors')

    error_message = db.Column(db.Text, nullable=True)
    last_scan_date = db.Column(db.DateTime, nullable=True)
    next_scan_date = db.Column(db.DateTime, nullable=True, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey('organizations.id'), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    TEXT_FIELDS = ('description', 'vendor', 'application_category', 'business_purpose',
                   'business_owner', 'technical_contact')

    @staticmethod
    def validate_name(name):
        if name is not None and not isinstance(name, str):
            raise ValueError("Review name must be a string")
        name = (name or '').strip()
        if not name or len(name) > 200:
            raise ValueError("Review name must be between 1 and 200 characters")
        return name

    @staticmethod
    def validate_url(url):
        """Validate an http(s) application URL."""
        if url is not None and not isinstance(url, str):
            raise ValueError("Invalid URL format")
        url = (url or '').strip()
        if not url:
            raise ValueError("Application URL is required")
        parsed = urlparse(url)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError("Invalid URL format")
        return url

    def to_dict(self, include_results=False):
        data = {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'application_url': self.application_url,
            'vendor': self.vendor,
            'application_category': self.application_category,
            'business_purpose': self.business_purpose,
            'business_owner': self.business_owner,
            'technical_contact': self.technical_contact,
            'data_processing_agreement': self.data_processing_agreement,
            'data_classification': enum_value(self.data_classification),
            'business_criticality': enum_value(self.business_criticality),
            'data_types': self.data_types,
            'status': enum_value(self.status),
            'scan_frequency': enum_value(self.scan_frequency),
            'overall_score': self.overall_score,
            'security_grade': enum_value(self.security_grade),
            'risk_level': enum_value(self.risk_level),
            'tls_grade': self.tls_grade,
            'headers_score': self.headers_score,
            'privacy_policy_status': self.privacy_policy_status,
            'terms_of_service_status': self.terms_of_service_status,
            'last_scan_date': isoformat(self.last_scan_date),
            'next_scan_date': isoformat(self.next_scan_date),
            'user_id': self.user_id,
            'organization_id': self.organization_id,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }
        if include_results:
            data.update({
                'security_headers': self.security_headers,
                'cookie_analysis': self.cookie_analysis,
                'security_findings': self.security_findings,
                'recommendations': self.recommendations,
                'risk_factors': self.risk_factors,
                'error_message': self.error_message,
            })
        return data

    def __repr__(self):
        return f'<ThirdPartyReview {self.name}>'
