"""Tests for report dispatch and download filenames"""
from datetime import datetime

import pytest

from report_config import ReportConfiguration, ReportValidationError
from report_service import (
    PDF_MIMETYPE,
    XLSX_MIMETYPE,
    excel_filename,
    generate_report,
    pdf_filename,
    safe_filename_stem,
)

ROUTE = {'id': 'r1', 'name': 'Route A', 'term': 'Term 1', 'year': 2024}
LEARNERS = [
    {'name': 'John', 'trip': 1, 'class_name': 'Grade 1', 'active': True},
    {'name': 'Mary', 'trip': 2, 'class_name': 'Grade 2', 'active': False},
]
WHEN = datetime(2024, 3, 7, 14, 5)


class TestFilenames:
    """Test download names"""

    def test_pdf_filename(self):
        assert pdf_filename('Route A', WHEN) == 'Route_A_Route_Report_07-Mar-2024.pdf'

    def test_excel_filename(self):
        assert excel_filename('Route A', WHEN) == 'Route_A_Transport_List_07-03-2024.xlsx'

    @pytest.mark.parametrize('name, expected', [
        ('Route  A  North', 'Route_A_North'),
        ('Route 1/2', 'Route_12'),
        ('..\\..\\etc', 'etc'),
        ('a:b*c?d"e<f>g|h', 'abcdefgh'),
        ('Tab\tand\nnewline', 'Tab_and_newline'),
        ('', 'Route'),
        (None, 'Route'),
        ('///', 'Route'),
    ])
    def test_safe_filename_stem(self, name, expected):
        assert safe_filename_stem(name) == expected


class TestGenerateReport:
    """Test format dispatch and refusals"""

    def test_pdf(self):
        report = generate_report(ReportConfiguration(route_id='r1'), ROUTE, LEARNERS, generated_at=WHEN)
        assert report.mimetype == PDF_MIMETYPE
        assert report.filename == 'Route_A_Route_Report_07-Mar-2024.pdf'
        assert report.content.startswith(b'%PDF')

    def test_excel(self):
        config = ReportConfiguration(route_id='r1', format='excel')
        report = generate_report(config, ROUTE, LEARNERS, generated_at=WHEN)
        assert report.mimetype == XLSX_MIMETYPE
        assert report.filename == 'Route_A_Transport_List_07-03-2024.xlsx'
        assert report.content[:2] == b'PK'

    def test_no_learners_left(self):
        config = ReportConfiguration(route_id='r1', trip_filter=3)
        with pytest.raises(ReportValidationError, match='No learners to include'):
            generate_report(config, ROUTE, LEARNERS)

    def test_empty_route(self):
        with pytest.raises(ReportValidationError):
            generate_report(ReportConfiguration(route_id='r1', format='excel'), ROUTE, [])

    def test_missing_route(self):
        with pytest.raises(ReportValidationError, match='Please select a route'):
            generate_report(ReportConfiguration(route_id='r1'), None, LEARNERS)

    def test_route_mismatch(self):
        with pytest.raises(ReportValidationError):
            generate_report(ReportConfiguration(route_id='other'), ROUTE, LEARNERS)
