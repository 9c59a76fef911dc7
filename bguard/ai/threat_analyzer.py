"""
BGuard STRIDE Threat Analyzer

Turns a system description into STRIDE findings. An LLM provides the
primary analysis; rule-based threats keyed on the system context are
added to it, and stand alone when no provider is available.
"""

import logging
from dataclasses import dataclass, field, asdict
from typing import Optional, List, Dict, Any

from bguard.ai.llm import LLMService, LLMError
from bguard.security.frameworks import (
    map_finding, map_stride_to_nist, calculate_cvss_score, get_asvs_level
)

logger = logging.getLogger(__name__)

STRIDE_CATEGORIES = ('SPOOFING', 'TAMPERING', 'REPUDIATION', 'INFORMATION_DISCLOSURE',
                     'DENIAL_OF_SERVICE', 'ELEVATION_OF_PRIVILEGE')
SEVERITIES = ('LOW', 'MEDIUM', 'HIGH', 'CRITICAL')


@dataclass
class ThreatItem:
    """A single identified threat, ready to become a Finding."""
    title: str
    description: str
    severity: str
    stride_category: str
    recommendation: str
    mitigation: Optional[str] = None
    nist_controls: List[str] = field(default_factory=list)
    owasp_category: Optional[str] = None
    cvss_score: Optional[float] = None
    asvs_level: Optional[int] = None
    reference_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ThreatAnalysisResult:
    summary: str
    threats: List[ThreatItem]
    recommendations: List[str] = field(default_factory=list)
    technical_assumptions: List[str] = field(default_factory=list)
    method: str = 'fallback'


@dataclass
class ThreatModelContext:
    """Structured facts about the system that drive the rule-based threats."""
    system_type: str = ''
    data_classification: str = ''
    network_exposure: str = ''
    authentication_methods: List[str] = field(default_factory=list)
    data_stores: List[str] = field(default_factory=list)
    trusted_boundaries: List[str] = field(default_factory=list)

    @classmethod
    def from_request(cls, data: Optional[Dict], prompt: str = '', system_type: Optional[str] = None):
        """
        Build a context from request data, inferring missing facts from the
        system description.
        """
        data = data or {}
        text = (prompt or '').lower()

        def as_list(value):
            if isinstance(value, str):
                return [v.strip() for v in value.split(',') if v.strip()]
            return [str(v) for v in (value or [])]

        ctx = cls(
            system_type=str(data.get('systemType') or data.get('system_type') or system_type or ''),
            data_classification=str(data.get('dataClassification') or data.get('data_classification') or ''),
            network_exposure=str(data.get('networkExposure') or data.get('network_exposure') or '').lower(),
            authentication_methods=[m.lower() for m in as_list(
                data.get('authenticationMethods') or data.get('authentication_methods'))],
            data_stores=as_list(data.get('dataStores') or data.get('data_stores')),
            trusted_boundaries=as_list(data.get('trustedBoundaries') or data.get('trusted_boundaries')),
        )

        if not ctx.system_type:
            if 'api' in text:
                ctx.system_type = 'api'
            elif any(word in text for word in ('web', 'browser', 'website')):
                ctx.system_type = 'web application'
        if not ctx.data_stores:
            ctx.data_stores = [w for w in ('database', 'postgres', 'mysql', 'redis', 's3', 'storage')
                               if w in text]
        if not ctx.authentication_methods and any(w in text for w in ('password', 'login', 'sign in')):
            ctx.authentication_methods = ['password']
        if not ctx.network_exposure and any(w in text for w in ('public', 'internet', 'customer-facing')):
            ctx.network_exposure = 'public'
        return ctx


def normalize_category(category) -> str:
    candidate = str(category or '').strip().upper().replace(' ', '_').replace('-', '_')
    return candidate if candidate in STRIDE_CATEGORIES else 'INFORMATION_DISCLOSURE'


def normalize_severity(severity) -> str:
    candidate = str(severity or '').strip().upper()
    return candidate if candidate in SEVERITIES else 'MEDIUM'


def rule_based_threats(ctx: ThreatModelContext) -> List[ThreatItem]:
    """Threats implied by the system context alone."""
    threats = []

    if ctx.data_stores:
        threats.append(ThreatItem(
            reference_id='TMT-001',
            title='Unauthorized Data Access',
            description='Sensitive data may be accessed by unauthorized entities due to '
                        'insufficient access controls',
            severity='HIGH',
            stride_category='INFORMATION_DISCLOSURE',
            recommendation='Implement proper access controls and encryption for data at rest',
            mitigation='Role-based access control, encryption of sensitive data, regular access reviews',
            nist_controls=map_stride_to_nist('INFORMATION_DISCLOSURE'),
            owasp_category='A01',
            cvss_score=calculate_cvss_score('HIGH', network_access=True, confidentiality_impact='HIGH'),
            asvs_level=get_asvs_level('HIGH'),
        ))

    if ctx.trusted_boundaries:
        threats.append(ThreatItem(
            reference_id='TMT-002',
            title='Trust Boundary Violation',
            description='Data or control flow crosses trust boundaries without proper validation',
            severity='HIGH',
            stride_category='TAMPERING',
            recommendation='Implement input validation and sanitization at trust boundaries',
            mitigation='Comprehensive input validation, parameterized queries, least privilege',
            nist_controls=map_stride_to_nist('TAMPERING'),
            owasp_category='A03',
            cvss_score=calculate_cvss_score('HIGH', privileges_required=False, integrity_impact='HIGH'),
            asvs_level=get_asvs_level('HIGH'),
        ))

    if 'password' in ctx.authentication_methods:
        threats.append(ThreatItem(
            reference_id='OTD-001',
            title='Weak Authentication Mechanism',
            description='Password-based authentication without additional factors is vulnerable to attacks',
            severity='MEDIUM',
            stride_category='SPOOFING',
            recommendation='Implement multi-factor authentication and strong password policies',
            mitigation='Multi-factor authentication, strong password policy, account lockout',
            nist_controls=map_stride_to_nist('SPOOFING'),
            owasp_category='A07',
            cvss_score=calculate_cvss_score('MEDIUM', privileges_required=False, user_interaction=True),
            asvs_level=get_asvs_level('MEDIUM'),
        ))

    if ctx.network_exposure == 'public':
        threats.append(ThreatItem(
            reference_id='OTD-002',
            title='Excessive Network Exposure',
            description='System components exposed to public networks increase attack surface',
            severity='HIGH',
            stride_category='DENIAL_OF_SERVICE',
            recommendation='Implement network segmentation and restrict public access',
            mitigation='Network segmentation, firewalls and intrusion detection, regular assessments',
            nist_controls=map_stride_to_nist('DENIAL_OF_SERVICE'),
            owasp_category='A05',
            cvss_score=calculate_cvss_score('HIGH', network_access=True, availability_impact='HIGH'),
            asvs_level=get_asvs_level('HIGH'),
        ))

    system_type = ctx.system_type.lower()
    if 'web' in system_type:
        threats.append(ThreatItem(
            reference_id='CTX-001',
            title='Cross-Site Scripting (XSS)',
            description='Web application may be vulnerable to XSS attacks due to insufficient input sanitization',
            severity='MEDIUM',
            stride_category='TAMPERING',
            recommendation='Implement comprehensive input validation and output encoding',
            mitigation='Content Security Policy, input validation, output encoding',
            nist_controls=['SI-2', 'CM-2'],
            owasp_category='A03',
            cvss_score=6.1,
            asvs_level=2,
        ))
    if 'api' in system_type:
        threats.append(ThreatItem(
            reference_id='CTX-002',
            title='API Security Misconfiguration',
            description='API endpoints may lack proper authentication and rate limiting',
            severity='HIGH',
            stride_category='ELEVATION_OF_PRIVILEGE',
            recommendation='Implement API authentication, authorization, and rate limiting',
            mitigation='OAuth 2.0 or API keys, rate limiting and throttling, API security testing',
            nist_controls=['AC-3', 'AC-6'],
            owasp_category='A01',
            cvss_score=7.5,
            asvs_level=2,
        ))

    return threats


# One generic threat per STRIDE category for descriptions that trigger no rule
BASELINE_THREATS = {
    'SPOOFING': ('Identity Spoofing',
                 'An attacker may impersonate a legitimate user or service',
                 'Authenticate every caller and protect credentials in transit and at rest'),
    'TAMPERING': ('Data Tampering',
                  'Data in transit or at rest may be modified without detection',
                  'Validate input and protect integrity with signatures or checksums'),
    'REPUDIATION': ('Insufficient Audit Trail',
                    'Users may deny actions because security-relevant events are not logged',
                    'Record tamper-evident audit logs for security-relevant actions'),
    'INFORMATION_DISCLOSURE': ('Sensitive Data Exposure',
                               'Confidential data may be exposed through errors, logs or weak access control',
                               'Encrypt sensitive data and apply least-privilege access'),
    'DENIAL_OF_SERVICE': ('Resource Exhaustion',
                          'The system may be made unavailable by excessive or malformed requests',
                          'Apply rate limiting, quotas and input size limits'),
    'ELEVATION_OF_PRIVILEGE': ('Privilege Escalation',
                               'A user may gain permissions beyond those granted',
                               'Enforce authorization checks on every privileged operation'),
}


def baseline_threats() -> List[ThreatItem]:
    threats = []
    for category, (title, description, recommendation) in BASELINE_THREATS.items():
        mapping = map_finding(category, 'MEDIUM')
        threats.append(ThreatItem(
            title=title, description=description, severity='MEDIUM', stride_category=category,
            recommendation=recommendation, mitigation=recommendation, **mapping,
        ))
    return threats


class ThreatAnalyzer:
    """STRIDE analysis over an optional LLM service."""

    SYSTEM_PROMPT = """You are a cybersecurity expert specializing in threat modeling using the STRIDE methodology.

Analyze the provided system description and identify potential security threats categorized by STRIDE:
- Spoofing: identity spoofing threats
- Tampering: data or system integrity threats
- Repudiation: non-repudiation threats
- Information Disclosure: confidentiality threats
- Denial of Service: availability threats
- Elevation of Privilege: authorization threats

For each threat provide a clear title and description, a severity (LOW, MEDIUM, HIGH, CRITICAL),
a specific recommendation and technical mitigation details.

Respond only with JSON of the form:
{"summary": "...",
 "strideAnalysis": [{"category": "SPOOFING", "threats": [{"title": "...", "description": "...",
   "severity": "HIGH", "recommendation": "...", "mitigation": "..."}]}],
 "recommendations": ["..."],
 "technicalAssumptions": ["..."]}"""

    def __init__(self, llm: LLMService):
        self.llm = llm

    def analyze(self, prompt: str, context: Optional[ThreatModelContext] = None,
                exclude_titles: Optional[List[str]] = None) -> ThreatAnalysisResult:
        """
        Analyze ``prompt``; threats whose titles appear in ``exclude_titles``
        are dropped.
        """
        context = context or ThreatModelContext.from_request({}, prompt)
        excluded = {t.strip().lower() for t in (exclude_titles or [])}
        rules = rule_based_threats(context)

        result = None
        if self.llm.is_available():
            try:
                result = self._analyze_with_llm(prompt, exclude_titles)
            except LLMError as e:
                logger.warning(f"LLM threat analysis failed, using rule-based analysis: {e}")

        if result is None:
            threats = rules or baseline_threats()
            result = ThreatAnalysisResult(
                summary=self._fallback_summary(context, threats),
                threats=threats,
                recommendations=sorted({t.recommendation for t in threats}),
                technical_assumptions=['Analysis performed with rule-based threat patterns'],
                method='fallback',
            )
        else:
            known = {t.title.lower() for t in result.threats}
            result.threats.extend(t for t in rules if t.title.lower() not in known)

        result.threats = [t for t in result.threats if t.title.strip().lower() not in excluded]
        return result

    def _analyze_with_llm(self, prompt: str, exclude_titles: Optional[List[str]]) -> ThreatAnalysisResult:
        user_prompt = f"System Description: {prompt}"
        if exclude_titles:
            listed = '\n'.join(f"- {title}" for title in exclude_titles)
            user_prompt += f"\n\nThese threats were already identified; find different ones:\n{listed}"

        data = self.llm.complete_json(self.SYSTEM_PROMPT, user_prompt, temperature=0.3)
        if not isinstance(data, dict):
            raise LLMError("Unexpected analysis format")

        threats = []
        for block in data.get('strideAnalysis') or []:
            if not isinstance(block, dict):
                continue
            category = normalize_category(block.get('category'))
            for raw in block.get('threats') or []:
                if not isinstance(raw, dict):
                    continue
                severity = normalize_severity(raw.get('severity'))
                recommendation = raw.get('recommendation') or 'No recommendation provided'
                threats.append(ThreatItem(
                    title=raw.get('title') or 'Untitled Threat',
                    description=raw.get('description') or 'No description provided',
                    severity=severity,
                    stride_category=category,
                    recommendation=recommendation,
                    mitigation=raw.get('mitigation') or recommendation,
                    **map_finding(category, severity),
                ))

        return ThreatAnalysisResult(
            summary=data.get('summary') or 'Analysis completed',
            threats=threats,
            recommendations=list(data.get('recommendations') or []),
            technical_assumptions=list(data.get('technicalAssumptions') or []),
            method=self.llm.provider.value,
        )

    @staticmethod
    def _fallback_summary(context: ThreatModelContext, threats: List[ThreatItem]) -> str:
        high = sum(1 for t in threats if t.severity in ('HIGH', 'CRITICAL'))
        categories = sorted({t.stride_category for t in threats})
        system = context.system_type or 'system'
        return (f"Rule-based STRIDE analysis of the {system} identified {len(threats)} threats "
                f"({high} high or critical) across {len(categories)} STRIDE categories.")
