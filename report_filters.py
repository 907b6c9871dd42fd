"""
Filtering, sorting and column projection of learners for route reports.
Everything here works on plain learner dicts and never touches the database.
"""

import unicodedata
from typing import NamedTuple

from report_config import (
    INDEX_LABEL,
    ReportValidationError,
    is_active_learner,
    trip_number,
)

NO_LEARNERS_MESSAGE = "No learners to include in the report"


def _collation_key(value):
    """Case and accent insensitive ordering key for display strings"""
    text = unicodedata.normalize('NFKD', str(value or ''))
    text = ''.join(ch for ch in text if not unicodedata.combining(ch))
    return text.casefold()


_SORT_KEYS = {
    'name': lambda learner: _collation_key(learner.get('name')),
    'class': lambda learner: _collation_key(learner.get('class_name')),
    'pickup_area': lambda learner: _collation_key(learner.get('pickup_area')),
    'trip': trip_number,
}


def _stored_trip(learner):
    try:
        return int(learner.get('trip'))
    except (TypeError, ValueError):
        return None


def matches_filters(learner, config):
    """True when the learner passes every active predicate of the configuration"""
    if not config.include_inactive and not is_active_learner(learner):
        return False
    if config.trip_filter is not None and _stored_trip(learner) != config.trip_filter:
        return False
    if config.pickup_area_filter is not None and learner.get('pickup_area') != config.pickup_area_filter:
        return False
    if config.class_filter is not None and learner.get('class_name') != config.class_filter:
        return False
    return True


def filter_learners(learners, config):
    return [learner for learner in learners if matches_filters(learner, config)]


def sort_learners(learners, sort_by='name'):
    """Stable sort; learners with equal keys keep their incoming order"""
    key = _SORT_KEYS.get(sort_by, _SORT_KEYS['name'])
    return sorted(learners, key=key)


def filter_and_sort(learners, config):
    """New ordered list of the learners the configuration selects"""
    return sort_learners(filter_learners(learners, config), config.sort_by)


def select_report_learners(learners, config):
    """filter_and_sort, refusing to hand back an empty selection"""
    selected = filter_and_sort(learners, config)
    if not selected:
        raise ReportValidationError(NO_LEARNERS_MESSAGE)
    return selected


class ReportTable(NamedTuple):
    """Projected report data shared by the PDF and Excel renderers"""
    columns: tuple
    headers: list
    rows: list

    @property
    def keys(self):
        return ['index'] + [column.key for column in self.columns]

    def records(self):
        """Each row as (column key, value) pairs"""
        return [list(zip(self.keys, row)) for row in self.rows]


def build_report_table(learners, config):
    columns = config.enabled_columns()
    headers = [INDEX_LABEL] + [column.label for column in columns]
    rows = [
        [index] + [column.render(learner) for column in columns]
        for index, learner in enumerate(learners, start=1)
    ]
    return ReportTable(columns=columns, headers=headers, rows=rows)


def distinct_pickup_areas(learners):
    """Pickup areas in first-seen order, blanks skipped"""
    seen = []
    for learner in learners:
        area = learner.get('pickup_area')
        if area and area not in seen:
            seen.append(area)
    return seen


def filter_options(learners):
    """Sorted distinct pickup areas and classes for the report filter drop-downs"""
    areas = sorted({l['pickup_area'] for l in learners if l.get('pickup_area')})
    classes = sorted({l['class_name'] for l in learners if l.get('class_name')})
    return areas, classes
