"""
BGuard Security Services

Access control, audit logging, security events, API keys and compliance
framework mapping.
"""
