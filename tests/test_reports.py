"""
PDF and Excel report tests.
"""

from io import BytesIO

import pytest
from openpyxl import load_workbook

from bguard import db
from bguard.models import ThreatModel, Report, AdminStats, ReportFormat, UserRole
from bguard.reports import render_report, build_report_data, executive_summary
from tests.conftest import login


@pytest.fixture
def model(threat_model):
    return db.session.get(ThreatModel, threat_model['id'])


def generate(client, threat_model, fmt):
    return client.post(f"/api/v1/threat-models/{threat_model['id']}/reports", json={'format': fmt})


def test_report_data_orders_findings_by_severity(model):
    data = build_report_data(model, 'Acme')
    assert data['company_name'] == 'Acme'
    assert data['total_findings'] == 4
    assert [f['severity'] for f in data['findings']] == ['HIGH', 'HIGH', 'HIGH', 'MEDIUM']
    assert data['severity_counts'] == {'LOW': 0, 'MEDIUM': 1, 'HIGH': 3, 'CRITICAL': 0}
    assert data['stride']['SPOOFING']['label'] == 'Spoofing'
    assert data['stride']['SPOOFING']['count'] == 1


def test_executive_summary(model):
    text = executive_summary(build_report_data(model))
    assert 'identified 4 findings: 0 critical, 3 high, 1 medium and 0 low severity' in text
    assert text.endswith('The 3 critical and high severity findings should be remediated first.')


def test_executive_summary_without_findings(model):
    for finding in model.findings.all():
        db.session.delete(finding)
    db.session.commit()
    assert 'has no recorded findings' in executive_summary(build_report_data(model))


def test_render_pdf(model):
    assert render_report(model, ReportFormat.PDF).startswith(b'%PDF')


def test_render_excel_sheets(model):
    content = render_report(model, ReportFormat.EXCEL)
    assert content.startswith(b'PK')
    workbook = load_workbook(BytesIO(content))
    assert workbook.sheetnames[1:] == ['Findings', 'STRIDE Analysis']
    stride = workbook['STRIDE Analysis']
    assert stride.cell(row=2, column=1).value == 'Spoofing'
    assert stride.cell(row=2, column=2).value == 1


def test_generate_and_download_pdf(member_client, threat_model):
    resp = generate(member_client, threat_model, 'pdf')
    assert resp.status_code == 201
    report = resp.get_json()['report']
    assert report['format'] == 'PDF'
    assert report['name'] == 'Payments API - PDF Report'
    assert report['file_size'] > 0

    resp = member_client.get(f"/api/v1/reports/{report['id']}/download")
    assert resp.status_code == 200
    assert resp.mimetype == 'application/pdf'
    assert resp.data.startswith(b'%PDF')
    assert 'Payments_API_-_PDF_Report.pdf' in resp.headers['Content-Disposition']

    listed = member_client.get('/api/v1/reports').get_json()['reports']
    assert listed[0]['download_count'] == 1


def test_generate_excel_updates_admin_stats(member_client, threat_model):
    resp = generate(member_client, threat_model, 'EXCEL')
    assert resp.status_code == 201
    download = member_client.get(f"/api/v1/reports/{resp.get_json()['report']['id']}/download")
    assert download.data.startswith(b'PK')
    assert AdminStats.query.one().total_reports == 1


def test_invalid_format(member_client, threat_model):
    assert generate(member_client, threat_model, 'DOCX').status_code == 400
    assert member_client.post(f"/api/v1/threat-models/{threat_model['id']}/reports", json={}).status_code == 400


def test_plain_users_cannot_generate(app, make_user, org, threat_model):
    viewer = make_user('viewer@bguard.io', role=UserRole.USER, organization=org)
    client = app.test_client()
    login(client, viewer.email)
    assert generate(client, threat_model, 'PDF').status_code == 403


def test_reports_are_scoped(member_client, outsider_client, threat_model):
    report_id = generate(member_client, threat_model, 'PDF').get_json()['report']['id']
    assert outsider_client.get(f'/api/v1/reports/{report_id}/download').status_code == 403
    assert outsider_client.get('/api/v1/reports').get_json()['total'] == 0
    assert generate(outsider_client, threat_model, 'PDF').status_code == 403


def test_soft_delete(member_client, threat_model):
    report_id = generate(member_client, threat_model, 'PDF').get_json()['report']['id']
    assert member_client.delete(f'/api/v1/reports/{report_id}').status_code == 200

    assert member_client.get(f'/api/v1/reports/{report_id}/download').status_code == 404
    assert member_client.delete(f'/api/v1/reports/{report_id}').status_code == 404
    assert member_client.get('/api/v1/reports').get_json()['total'] == 0

    report = db.session.get(Report, report_id)
    assert report.deleted_at is not None
    assert AdminStats.query.one().total_reports == 0
