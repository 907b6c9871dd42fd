"""
Report generation: selects the learners for a configuration and hands them
to the matching renderer. Inputs are plain records; fetching them is the
caller's job.
"""

from datetime import datetime
from typing import NamedTuple
import logging
import re

from excel_report import render_excel
from pdf_report import DEFAULT_SCHOOL_NAME, render_pdf
from report_config import ReportValidationError
from report_filters import select_report_learners

logger = logging.getLogger(__name__)

PDF_MIMETYPE = 'application/pdf'
XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f\x7f]')
DEFAULT_FILENAME_STEM = 'Route'


class RenderedReport(NamedTuple):
    filename: str
    mimetype: str
    content: bytes


def safe_filename_stem(route_name):
    """Route name with whitespace runs as underscores and path characters removed"""
    stem = re.sub(r'\s+', '_', (route_name or '').strip())
    stem = _UNSAFE_FILENAME_CHARS.sub('', stem).strip('._')
    return stem or DEFAULT_FILENAME_STEM


def pdf_filename(route_name, generated_at):
    return f"{safe_filename_stem(route_name)}_Route_Report_{generated_at.strftime('%d-%b-%Y')}.pdf"


def excel_filename(route_name, generated_at):
    return f"{safe_filename_stem(route_name)}_Transport_List_{generated_at.strftime('%d-%m-%Y')}.xlsx"


def generate_report(config, route, learners, settings=None, driver=None, minder=None,
                    areas=None, generated_at=None, default_school_name=DEFAULT_SCHOOL_NAME):
    """
    Produce the report file for a configuration.

    Raises ReportValidationError when the route is missing or no learner
    survives the filters; nothing is rendered in that case.
    """
    if not route:
        raise ReportValidationError("Please select a route")
    if route.get('id') and route['id'] != config.route_id:
        raise ReportValidationError("Selected route does not match the report configuration")

    generated_at = generated_at or datetime.now()
    selected = select_report_learners(learners, config)

    if config.format == 'pdf':
        content = render_pdf(
            route, selected, config,
            settings=settings,
            driver=driver,
            minder=minder,
            areas=areas,
            generated_at=generated_at,
            default_school_name=default_school_name,
        )
        report = RenderedReport(pdf_filename(route.get('name'), generated_at), PDF_MIMETYPE, content)
    else:
        content = render_excel(route, selected, config, generated_at=generated_at)
        report = RenderedReport(excel_filename(route.get('name'), generated_at), XLSX_MIMETYPE, content)

    logger.info(f"Generated {config.format} report {report.filename} ({len(selected)} of {len(learners)} learners)")
    return report
