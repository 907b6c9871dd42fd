"""
Report configuration for route transport lists.

COLUMNS is the single canonical column table: both the PDF and the Excel
renderers project learners through it, so column order, labels and cell
formatting cannot drift between the two outputs.
"""

from typing import Callable, Literal, NamedTuple, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

PLACEHOLDER = '-'

SORT_KEYS = ('name', 'class', 'pickup_area', 'trip')
FORMATS = ('pdf', 'excel')
TRIP_SLOTS = (1, 2, 3)


class ReportError(ValueError):
    """Base error for report generation"""


class ReportValidationError(ReportError):
    """Report request cannot be honoured (missing route, nothing to print, ...)"""


def trip_number(learner):
    """Trip slot of a learner; missing or unusable values count as trip 1"""
    trip = learner.get('trip')
    try:
        trip = int(trip)
    except (TypeError, ValueError):
        return 1
    return trip or 1


def is_active_learner(learner):
    """Learners carry either a boolean 'active' flag or a 'status' string"""
    if 'active' in learner:
        return bool(learner['active'])
    return learner.get('status', 'active') == 'active'


def _text(field):
    def render(learner):
        value = learner.get(field)
        if value is None:
            return PLACEHOLDER
        # Whitespace runs collapse to single spaces
        return ' '.join(str(value).split()) or PLACEHOLDER
    return render


def _trip(learner):
    return f"Trip {trip_number(learner)}"


def _status(learner):
    return 'Active' if is_active_learner(learner) else 'Inactive'


class ReportColumn(NamedTuple):
    key: str
    label: str
    render: Callable[[dict], str]
    toggleable: bool = True
    default: bool = True


# Canonical order. The row index column is emitted ahead of these by the
# table projection and is never configurable.
COLUMNS = (
    ReportColumn('name', 'Name', _text('name'), toggleable=False),
    ReportColumn('admission_no', 'Adm No', _text('admission_no')),
    ReportColumn('class', 'Class', _text('class_name')),
    ReportColumn('trip', 'Trip', _trip),
    ReportColumn('pickup_area', 'Pickup Area', _text('pickup_area')),
    ReportColumn('pickup_time', 'Pickup Time', _text('pickup_time'), default=False),
    ReportColumn('dropoff_area', 'Dropoff Area', _text('dropoff_area'), default=False),
    ReportColumn('drop_time', 'Dropoff Time', _text('drop_time'), default=False),
    ReportColumn('father_phone', 'Father Phone', _text('father_phone')),
    ReportColumn('mother_phone', 'Mother Phone', _text('mother_phone')),
    ReportColumn('house_help_phone', 'House Help', _text('house_help_phone'), default=False),
    ReportColumn('active', 'Status', _status, default=False),
)

INDEX_LABEL = '#'

COLUMNS_BY_KEY = {column.key: column for column in COLUMNS}


def default_columns():
    """Column selection a new report session starts with"""
    return {column.key: column.default for column in COLUMNS}


class ReportConfiguration(BaseModel):
    """Settings for one report generation"""
    route_id: str = Field(..., min_length=1, description="Route the report is generated for")
    format: Literal['pdf', 'excel'] = Field(default='pdf', description="Output file type")
    sort_by: Literal['name', 'class', 'pickup_area', 'trip'] = Field(default='name')
    trip_filter: Optional[int] = Field(default=None, description="Only learners on this trip")
    pickup_area_filter: Optional[str] = Field(default=None)
    class_filter: Optional[str] = Field(default=None)
    include_inactive: bool = Field(default=False)
    columns: dict[str, bool] = Field(default_factory=default_columns)

    @field_validator('route_id', mode='before')
    @classmethod
    def strip_route_id(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('trip_filter', mode='before')
    @classmethod
    def parse_trip_filter(cls, v):
        """Blank select values mean 'all trips'"""
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v

    @field_validator('pickup_area_filter', 'class_filter', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v)
        return v if v.strip() else None

    @field_validator('columns', mode='before')
    @classmethod
    def merge_columns(cls, v):
        """Fill missing keys from the defaults; name can never be switched off"""
        if v is None:
            v = {}
        unknown = set(v) - set(COLUMNS_BY_KEY)
        if unknown:
            raise ValueError(f"Unknown report columns: {', '.join(sorted(unknown))}")
        merged = default_columns()
        merged.update({key: bool(value) for key, value in v.items()})
        for column in COLUMNS:
            if not column.toggleable:
                merged[column.key] = True
        return merged

    def enabled_columns(self):
        """Selected columns in canonical order"""
        return tuple(
            column for column in COLUMNS
            if not column.toggleable or self.columns.get(column.key, False)
        )

    def with_column_toggled(self, key):
        """Copy of this configuration with one optional column flipped"""
        column = COLUMNS_BY_KEY.get(key)
        if column is None:
            raise ReportValidationError(f"Unknown report column: {key}")
        if not column.toggleable:
            return self.model_copy(deep=True)
        columns = dict(self.columns)
        columns[key] = not columns.get(key, False)
        return self.model_copy(update={'columns': columns})

    @classmethod
    def from_form(cls, form):
        """
        Build a configuration from submitted form data.

        Checkbox columns are posted as repeated 'columns' values; the hidden
        'columns_submitted' marker tells an empty selection apart from a
        request that did not send any column choices at all.
        """
        data = {
            'route_id': form.get('route_id', ''),
            'format': form.get('format') or 'pdf',
            'sort_by': form.get('sort_by') or 'name',
            'trip_filter': form.get('trip_filter'),
            'pickup_area_filter': form.get('pickup_area_filter'),
            'class_filter': form.get('class_filter'),
            'include_inactive': _truthy(form.get('include_inactive')),
        }
        if form.get('columns_submitted') or _getlist(form, 'columns'):
            selected = set(_getlist(form, 'columns'))
            data['columns'] = {
                column.key: column.key in selected
                for column in COLUMNS if column.toggleable
            }
        return build_configuration(data)


def _getlist(form, key):
    if hasattr(form, 'getlist'):
        return form.getlist(key)
    value = form.get(key)
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _truthy(value):
    if isinstance(value, bool):
        return value
    return str(value or '').strip().lower() in ('1', 'true', 'on', 'yes')


_FIELD_MESSAGES = {
    'route_id': "Please select a route",
    'format': "Report format must be PDF or Excel",
    'sort_by': f"Sort by must be one of: {', '.join(SORT_KEYS)}",
    'trip_filter': "Trip filter must be a trip number",
}


def build_configuration(data):
    """Validate raw settings, turning pydantic errors into ReportValidationError"""
    try:
        return ReportConfiguration.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        field = first['loc'][0] if first['loc'] else None
        message = _FIELD_MESSAGES.get(field, first['msg'])
        raise ReportValidationError(message) from e
