# costtrack/validation.py

"""Request parsing helpers shared by the blueprints.

Shape checks happen here, before anything reaches the engines; every failure
is a ``ValidationError``.
"""

from __future__ import annotations

from datetime import date, datetime

from flask import request

from costtrack.errors import ValidationError
from costtrack.numbers import to_decimal
from costtrack.store import VarianceFilter


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def parse_int(value, field, required=False, minimum=None):
    if value is None or value == '':
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be an integer')
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f'{field} must be an integer') from None
    if minimum is not None and result < minimum:
        raise ValidationError(f'{field} must be at least {minimum}')
    return result


def parse_decimal(value, field, required=False):
    if value is None or value == '':
        if required:
            raise ValidationError(f'{field} is required')
        return None
    try:
        return to_decimal(value, field)
    except ValueError as e:
        raise ValidationError(str(e)) from None


def parse_date(value, field):
    if value is None or value == '':
        return None
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format') from None


def parse_text(value, field, required=False, max_length=None):
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string')
    value = value.strip()
    if max_length and len(value) > max_length:
        raise ValidationError(f'{field} must be at most {max_length} characters')
    return value


def parse_choice(value, field, choices, required=False):
    if value is None or value == '':
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def parse_bool(value, field):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return value
    text = str(value).lower()
    if text in ('1', 'true', 'yes', 'on'):
        return True
    if text in ('0', 'false', 'no', 'off'):
        return False
    raise ValidationError(f'{field} must be a boolean')


def filter_from_args(args) -> VarianceFilter:
    """Build a ``VarianceFilter`` from query-string arguments."""
    filt = VarianceFilter(
        site_id=parse_int(args.get('site_id'), 'site_id'),
        estimate_id=parse_int(args.get('estimate_id'), 'estimate_id'),
        category_id=parse_int(args.get('category_id'), 'category_id'),
        date_from=parse_date(args.get('date_from'), 'date_from'),
        date_to=parse_date(args.get('date_to'), 'date_to'),
    )
    if filt.date_from and filt.date_to and filt.date_from > filt.date_to:
        raise ValidationError('date_from must not be after date_to')
    return filt


def current_user_id():
    """Principal id forwarded by the identity layer, if any."""
    return parse_int(request.headers.get('X-User-Id'), 'X-User-Id')
