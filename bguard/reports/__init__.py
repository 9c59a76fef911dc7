"""
BGuard Reports Module

PDF (ReportLab) and Excel (openpyxl) exports of threat models.
"""

from bguard.models.report import ReportFormat
from bguard.reports.summary import build_report_data, executive_summary
from bguard.reports.pdf import render_pdf
from bguard.reports.excel import render_excel


def render_report(threat_model, report_format, company_name='BGuard Suite'):
    """Render ``threat_model`` in ``report_format`` and return the bytes."""
    data = build_report_data(threat_model, company_name)
    if report_format is ReportFormat.PDF:
        return render_pdf(data)
    return render_excel(data)


__all__ = ['render_report', 'build_report_data', 'executive_summary', 'render_pdf', 'render_excel']
