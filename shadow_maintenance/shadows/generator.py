"""
Shadow Record Generator

Computes the exact set of shadow index records a primary record should have
under a resource schema. Pure functions, no I/O.

Shadow sort keys have the form ``<field>#<encoded value>\\x00#id#<record id>``.
The NUL terminator sorts below every character a value can contain, so all
shadows of one field sort by value, then by record id, and never collide with
another field's shadows or with primary keys (``id#<id>``).
"""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping

from shadow_maintenance.shadows.schema import (
    KEY_SEPARATOR,
    PRIMARY_KEY_PREFIX,
    FieldType,
    ResourceSchema,
)

logger = logging.getLogger(__name__)

NUMBER_WIDTH = 20
FRACTION_WIDTH = 6
MAX_NUMBER = 10 ** NUMBER_WIDTH

VALUE_TERMINATOR = "\x00"
# NUL within a string value; \xff sorts above the separator after a terminator
ESCAPED_NUL = "\x00\xff"

_SCALE = 10 ** FRACTION_WIDTH
_SCALED_LIMIT = MAX_NUMBER * _SCALE


class ShadowGenerationError(ValueError):
    """Raised when a field value cannot be encoded for its declared type."""

    code = "VALIDATION_ERROR"


def encode_value(value: Any, field_type: FieldType) -> str:
    """
    Encode a field value so that lexicographic order matches value order.

    Args:
        value: Field value from the primary record
        field_type: Declared type of the field

    Returns:
        Encoded sort component

    Raises:
        ShadowGenerationError: If the value does not fit the declared type
    """
    if field_type is FieldType.STRING:
        if not isinstance(value, str):
            raise ShadowGenerationError(f"Expected a string, got {type(value).__name__}")
        return value.replace(VALUE_TERMINATOR, ESCAPED_NUL)

    if field_type is FieldType.NUMBER:
        return _encode_number(value)

    if field_type is FieldType.DATETIME:
        return _encode_datetime(value)

    if field_type is FieldType.BOOLEAN:
        if not isinstance(value, bool):
            raise ShadowGenerationError(f"Expected a boolean, got {type(value).__name__}")
        return "1" if value else "0"

    raise ShadowGenerationError(f"Unsupported field type: {field_type}")


def _encode_number(value: Any) -> str:
    """
    Fixed-point encoding: 20 integer digits and 6 fraction digits.

    Values are floored to the fraction width. Negative values are written as
    ``-`` followed by their complement against 10**26, so they sort below
    every non-negative value and in numeric order among themselves.
    """
    if isinstance(value, bool):
        value = int(value)

    try:
        number = Decimal(str(value)) if isinstance(value, (str, float)) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ShadowGenerationError(f"Expected a number, got {value!r}") from None

    if not number.is_finite():
        raise ShadowGenerationError(f"Number must be finite, got {value!r}")

    scaled = int((number * _SCALE).to_integral_value(rounding=ROUND_FLOOR))
    if not -_SCALED_LIMIT < scaled < _SCALED_LIMIT:
        raise ShadowGenerationError(
            f"Number {value!r} does not fit in {NUMBER_WIDTH} digits"
        )

    sign = ""
    if scaled < 0:
        sign = "-"
        scaled += _SCALED_LIMIT

    integral, fraction = divmod(scaled, _SCALE)
    return f"{sign}{integral:0{NUMBER_WIDTH}d}.{fraction:0{FRACTION_WIDTH}d}"


def _encode_datetime(value: Any) -> str:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ShadowGenerationError(f"Invalid ISO-8601 datetime: {value!r}") from None
    else:
        raise ShadowGenerationError(f"Expected a datetime, got {type(value).__name__}")

    # Assume UTC if no timezone
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    utc = parsed.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_shadow_key(field_name: str, encoded_value: str, record_id: str) -> str:
    """Compose a shadow sort key."""
    return (
        f"{field_name}{KEY_SEPARATOR}{encoded_value}{VALUE_TERMINATOR}"
        f"{KEY_SEPARATOR}{PRIMARY_KEY_PREFIX}{record_id}"
    )


def is_owned_shadow_key(key: str, record_id: str) -> bool:
    """
    Check that a key names a shadow record of the given primary record.

    Primary keys and other records' shadows are never owned. Keys written
    before the NUL terminator was introduced are still recognised.
    """
    if not isinstance(key, str) or key.startswith(PRIMARY_KEY_PREFIX):
        return False
    return key.endswith(f"{KEY_SEPARATOR}{PRIMARY_KEY_PREFIX}{record_id}")


def generate_shadow_records(
    record_id: str,
    data: Mapping[str, Any],
    schema: ResourceSchema
) -> List[Dict[str, Any]]:
    """
    Generate the shadow records for a primary record.

    Fields are visited in the schema's declared order; fields that are
    absent or None are skipped.

    Args:
        record_id: Primary record id (without the ``id#`` prefix)
        data: Current field values of the record
        schema: Resource shadow schema

    Returns:
        Shadow records as ``{"PK", "SK", "data": {"id"}}`` items

    Raises:
        ShadowGenerationError: If a value does not fit its declared type
    """
    records = []

    for field_name, field_type in schema.sortable_fields.items():
        value = data.get(field_name)
        if value is None:
            continue

        try:
            encoded = encode_value(value, field_type)
        except ShadowGenerationError as e:
            raise ShadowGenerationError(
                f"Field '{field_name}' of {schema.name} record {record_id}: {e}"
            ) from e

        records.append({
            "PK": schema.name,
            "SK": build_shadow_key(field_name, encoded, record_id),
            "data": {"id": record_id},
        })

    return records


def generate_shadow_keys(
    record_id: str,
    data: Mapping[str, Any],
    schema: ResourceSchema
) -> List[str]:
    """Generate only the shadow sort keys for a primary record."""
    return [record["SK"] for record in generate_shadow_records(record_id, data, schema)]
