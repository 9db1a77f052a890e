"""
Record payload validation against a record type's field definitions.

The payload is a free-form JSON map keyed by field slug; the field
definitions are the only schema.  ``validate_record_data`` collects every
problem into one ValidationError so the client can show them together.
"""

from datetime import date, datetime

from app.core.exceptions import ValidationError
from app.models.record import FIELD_TYPES, RecordType


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_iso(value, parser) -> bool:
    if not isinstance(value, str):
        return False
    try:
        parser(value)
    except ValueError:
        return False
    return True


def _check_scalar(field, value) -> str | None:
    """Return an error string, or None when *value* fits *field*."""
    ftype = field.field_type
    if ftype not in FIELD_TYPES:
        return f"unsupported field type: {ftype}"
    if ftype in ("text", "textarea"):
        return None if isinstance(value, str) else "must be a string"
    if ftype == "url":
        if isinstance(value, str) and value.startswith(("http://", "https://")):
            return None
        return "must be an http(s) URL"
    if ftype == "number":
        return None if _is_number(value) else "must be a number"
    if ftype == "boolean":
        return None if isinstance(value, bool) else "must be true or false"
    if ftype == "date":
        return None if _is_iso(value, date.fromisoformat) else "must be an ISO date (YYYY-MM-DD)"
    if ftype == "datetime":
        return None if _is_iso(value, datetime.fromisoformat) else "must be an ISO datetime"
    if ftype == "select":
        options = field.options or []
        return None if value in options else f"must be one of: {', '.join(map(str, options))}"
    if ftype == "multi_select":
        options = field.options or []
        if not isinstance(value, list):
            return "must be a list"
        bad = [v for v in value if v not in options]
        return f"unknown option(s): {', '.join(map(str, bad))}" if bad else None
    if ftype in ("location", "object"):
        return None if isinstance(value, dict) else "must be an object"
    return None


def _is_blank(value) -> bool:
    return value is None or value == "" or value == []


def validate_record_data(record_type: RecordType, data, *, partial: bool = False) -> dict:
    """
    Validate *data* against *record_type*'s field definitions.

    Args:
        record_type: Type whose ``fields`` define the allowed slugs.
        data: Payload to check.
        partial: True for merges (PATCH) — required fields are not enforced.

    Returns:
        The payload unchanged, for chaining.

    Raises:
        ValidationError with ``details`` keyed by field slug.
    """
    if not isinstance(data, dict):
        raise ValidationError("Record data must be an object", details={"data": "must be an object"})

    fields = {f.slug: f for f in record_type.fields}
    errors: dict[str, str] = {}

    for slug in data:
        if slug not in fields:
            errors[slug] = "unknown field"

    for slug, field in fields.items():
        value = data.get(slug)
        if _is_blank(value):
            if field.is_required and not partial:
                errors[slug] = "is required"
            elif field.is_required and slug in data:
                errors[slug] = "is required"
            continue
        if field.is_array and field.field_type != "multi_select":
            if not isinstance(value, list):
                errors[slug] = "must be a list"
                continue
            for item in value:
                problem = _check_scalar(field, item)
                if problem:
                    errors[slug] = problem
                    break
        else:
            problem = _check_scalar(field, value)
            if problem:
                errors[slug] = problem

    if errors:
        raise ValidationError("Record data failed validation", details=errors)
    return data
