"""
BGuard Endpoint Classifier

Classifies discovered endpoints by type, sensitivity and risk, flags
anomalies and writes an executive summary of a discovery session.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from bguard.ai.llm import LLMService, LLMError
from bguard.models.endpoint import EndpointType, EndpointSensitivity, EndpointRiskLevel

logger = logging.getLogger(__name__)


@dataclass
class EndpointInfo:
    """Observed facts about one endpoint, as fed to the classifier."""
    url: str
    path: str
    domain: str
    method: str = 'GET'
    query_params: List[str] = field(default_factory=list)
    status_code: Optional[int] = None
    content_type: Optional[str] = None
    response_size: Optional[int] = None
    security_headers: Dict[str, str] = field(default_factory=dict)
    forms: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class EndpointClassification:
    endpoint_type: str
    sensitivity: str
    risk_score: float
    risk_level: str
    function_purpose: str
    security_concerns: List[str] = field(default_factory=list)
    data_exposure: List[str] = field(default_factory=list)
    is_anomaly: bool = False
    anomaly_reason: Optional[str] = None
    anomaly_score: Optional[float] = None
    classification: Dict[str, Any] = field(default_factory=dict)


def risk_level_for_score(score: float) -> str:
    if score >= 8:
        return 'CRITICAL'
    if score >= 6:
        return 'HIGH'
    if score >= 4:
        return 'MEDIUM'
    return 'LOW'


def _member(enum_cls, value, default):
    return value if value in enum_cls.__members__ else default


def _as_float(value, default):
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def fallback_classification(endpoint: EndpointInfo) -> EndpointClassification:
    """Path-pattern classification used without (or after a failed) LLM call."""
    path = endpoint.path.lower()
    endpoint_type, sensitivity, score = 'OTHER', 'INTERNAL', 5

    if 'login' in path or 'signin' in path or 'auth' in path:
        endpoint_type, sensitivity, score = 'LOGIN_PAGE', 'RESTRICTED', 7
    elif 'admin' in path or 'dashboard' in path:
        endpoint_type, sensitivity, score = 'ADMIN_PANEL', 'HIGHLY_SENSITIVE', 9
    elif 'api/' in path:
        endpoint_type, sensitivity, score = 'API_ENDPOINT', 'INTERNAL', 6
    elif 'upload' in path:
        endpoint_type, sensitivity, score = 'FILE_UPLOAD', 'RESTRICTED', 8
    elif endpoint.status_code == 404:
        endpoint_type, sensitivity, score = 'ERROR_PAGE', 'PUBLIC', 2

    return EndpointClassification(
        endpoint_type=endpoint_type,
        sensitivity=sensitivity,
        risk_score=float(score),
        risk_level=risk_level_for_score(score),
        function_purpose='Classified using fallback rules',
        security_concerns=['Classification performed without AI analysis'],
        data_exposure=[],
        is_anomaly=False,
        classification={
            'reasoning': 'Fallback rule-based classification',
            'confidence': 0.3,
            'method': 'fallback',
        },
    )


def classification_confidence(analysis: Dict[str, Any]) -> float:
    confidence = 0.5
    if len(str(analysis.get('functionPurpose') or '')) > 10:
        confidence += 0.1
    if analysis.get('securityConcerns'):
        confidence += 0.1
    if len(str(analysis.get('reasoning') or '')) > 20:
        confidence += 0.2
    if _as_float(analysis.get('riskScore'), None) is not None:
        confidence += 0.1
    return min(1.0, round(confidence, 2))


def parse_classification(analysis: Dict[str, Any]) -> EndpointClassification:
    """Normalize a model response; invalid enum values collapse to safe defaults."""
    is_anomaly = bool(analysis.get('isAnomaly'))
    concerns = analysis.get('securityConcerns')
    exposure = analysis.get('dataExposure')
    return EndpointClassification(
        endpoint_type=_member(EndpointType, analysis.get('endpointType'), 'OTHER'),
        sensitivity=_member(EndpointSensitivity, analysis.get('sensitivity'), 'INTERNAL'),
        risk_score=max(0.0, min(10.0, _as_float(analysis.get('riskScore'), 5.0) or 5.0)),
        risk_level=_member(EndpointRiskLevel, analysis.get('riskLevel'), 'MEDIUM'),
        function_purpose=analysis.get('functionPurpose') or 'Unknown function',
        security_concerns=concerns if isinstance(concerns, list) else [],
        data_exposure=exposure if isinstance(exposure, list) else [],
        is_anomaly=is_anomaly,
        anomaly_reason=analysis.get('anomalyReason') or None,
        anomaly_score=(max(0.0, min(1.0, _as_float(analysis.get('anomalyScore'), 0.5) or 0.5))
                       if is_anomaly else None),
        classification={
            'reasoning': analysis.get('reasoning') or '',
            'confidence': classification_confidence(analysis),
            'raw_analysis': analysis,
        },
    )


def fallback_summary(results: List[EndpointClassification], domain: str) -> str:
    high = sum(1 for r in results if r.risk_level in ('HIGH', 'CRITICAL'))
    anomalies = sum(1 for r in results if r.is_anomaly)
    return (f"Endpoint discovery completed for {domain}. Found {len(results)} total endpoints. "
            f"{high} endpoints were classified as high or critical risk. "
            f"{anomalies} potential anomalies were detected. A detailed manual review is "
            f"recommended to assess security posture and implement appropriate controls.")


class EndpointClassifier:
    """Batch endpoint classification over an optional LLM service."""

    BATCH_SIZE = 5

    SYSTEM_PROMPT = ('You are a cybersecurity expert specializing in web application security. '
                     'Analyze the provided endpoint information and classify it according to the '
                     'specified criteria. Respond with structured JSON only.')

    SUMMARY_SYSTEM_PROMPT = 'You are a cybersecurity analyst creating executive summaries of security assessments.'

    def __init__(self, llm: LLMService):
        self.llm = llm

    def classify_all(self, endpoints: List[EndpointInfo]) -> List[EndpointClassification]:
        results = []
        for start in range(0, len(endpoints), self.BATCH_SIZE):
            for endpoint in endpoints[start:start + self.BATCH_SIZE]:
                results.append(self.classify(endpoint))
        return results

    def classify(self, endpoint: EndpointInfo) -> EndpointClassification:
        if not self.llm.is_available():
            return fallback_classification(endpoint)
        try:
            analysis = self.llm.complete_json(self.SYSTEM_PROMPT, self._build_prompt(endpoint), temperature=0.1)
            if not isinstance(analysis, dict):
                raise LLMError("Unexpected classification format")
            return parse_classification(analysis)
        except LLMError as e:
            logger.warning(f"Classification failed for {endpoint.url}: {e}")
            return fallback_classification(endpoint)

    @staticmethod
    def _build_prompt(endpoint: EndpointInfo) -> str:
        headers = ', '.join(f"{k}: {v}" for k, v in endpoint.security_headers.items()) or 'None'
        forms = ', '.join(str(form) for form in endpoint.forms) or 'None'
        return f"""Analyze this web endpoint and provide a security classification:

URL: {endpoint.url}
HTTP Method: {endpoint.method}
Path: {endpoint.path}
Query Parameters: {', '.join(endpoint.query_params) or 'None'}
Status Code: {endpoint.status_code or 'Unknown'}
Content Type: {endpoint.content_type or 'Unknown'}
Response Size: {endpoint.response_size or 'Unknown'} bytes
Security Headers: {headers}
Forms: {forms}
Domain: {endpoint.domain}

Respond with JSON using these keys:
- endpointType: one of {', '.join(EndpointType.__members__)}
- sensitivity: one of {', '.join(EndpointSensitivity.__members__)}
- riskScore: number 0-10
- riskLevel: one of {', '.join(EndpointRiskLevel.__members__)}
- functionPurpose: brief description of the endpoint's function
- securityConcerns: list of security concerns
- dataExposure: list of potential data exposure risks
- isAnomaly: true if the endpoint seems unusual or suspicious
- anomalyReason: explanation when isAnomaly is true
- anomalyScore: number 0-1 when isAnomaly is true
- reasoning: explanation of the classification"""

    def summarize(self, results: List[EndpointClassification], domain: str) -> str:
        if not self.llm.is_available():
            return fallback_summary(results, domain)

        types = Counter(r.endpoint_type for r in results)
        concerns = []
        for r in results:
            for concern in r.security_concerns:
                if concern not in concerns:
                    concerns.append(concern)
        type_lines = '\n'.join(f"- {t}: {c}" for t, c in types.most_common())
        concern_lines = '\n'.join(f"- {c}" for c in concerns[:5])
        prompt = f"""Generate a security summary for endpoint discovery results:

Domain: {domain}
Total Endpoints: {len(results)}
High Risk: {sum(1 for r in results if r.risk_level in ('HIGH', 'CRITICAL'))}
Medium Risk: {sum(1 for r in results if r.risk_level == 'MEDIUM')}
Low Risk: {sum(1 for r in results if r.risk_level == 'LOW')}
Anomalies: {sum(1 for r in results if r.is_anomaly)}

Endpoint Types Found:
{type_lines}

Top Security Concerns:
{concern_lines}

Write a 2-3 paragraph executive summary covering overall posture, key risks and priority
recommendations."""
        try:
            return self.llm.complete(self.SUMMARY_SYSTEM_PROMPT, prompt, temperature=0.3)
        except LLMError as e:
            logger.warning(f"Summary generation failed: {e}")
            return fallback_summary(results, domain)
