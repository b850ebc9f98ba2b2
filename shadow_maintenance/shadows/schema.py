"""
Shadow Schema Registry

Parses and validates the shadow configuration document that declares, per
resource, which fields get a shadow index record and how their values are
encoded. The document is validated once at load time so the rest of the
engine can trust its shape.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

PRIMARY_KEY_PREFIX = "id#"
KEY_SEPARATOR = "#"


class FieldType(Enum):
    """Supported value encodings for sortable fields."""
    STRING = "string"
    NUMBER = "number"
    DATETIME = "datetime"
    BOOLEAN = "boolean"


class SortOrder(Enum):
    """Default sort direction for a resource."""
    ASC = "ASC"
    DESC = "DESC"


class ShadowConfigError(Exception):
    """Raised when the shadow configuration is missing, malformed or invalid."""

    code = "CONFIG_ERROR"


@dataclass(frozen=True)
class SortDefaults:
    """Default sort field and direction for list queries."""

    field: str
    order: SortOrder

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "order": self.order.value}


@dataclass(frozen=True)
class ResourceSchema:
    """
    Shadow schema for a single resource.

    Attributes:
        name: Resource name, also the partition key of its records
        sortable_fields: Ordered mapping of field name to value type
        sort_defaults: Optional default sort for list queries
        ttl_days: Optional retention period in days
    """

    name: str
    sortable_fields: Dict[str, FieldType]
    sort_defaults: Optional[SortDefaults] = None
    ttl_days: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Render the resource in shadow config document form."""
        doc: Dict[str, Any] = {
            "shadows": {
                name: {"type": field_type.value}
                for name, field_type in self.sortable_fields.items()
            }
        }
        if self.sort_defaults is not None:
            doc["sortDefaults"] = self.sort_defaults.to_dict()
        if self.ttl_days is not None:
            doc["ttl"] = {"days": self.ttl_days}
        return doc


@dataclass(frozen=True)
class ShadowConfig:
    """
    Validated shadow configuration for all resources.

    Immutable for the lifetime of a worker invocation.
    """

    schema_version: str
    resources: Dict[str, ResourceSchema]
    database: Dict[str, Any] = field(default_factory=dict)
    generated_from: Optional[str] = None

    @classmethod
    def from_dict(cls, doc: Any) -> "ShadowConfig":
        """
        Build a config from its JSON document form.

        Args:
            doc: Parsed shadow config document

        Returns:
            Validated ShadowConfig

        Raises:
            ShadowConfigError: If the document does not have the expected shape
        """
        if not isinstance(doc, dict):
            raise ShadowConfigError("Shadow config must be a JSON object")

        schema_version = doc.get("$schemaVersion")
        if not isinstance(schema_version, str) or not schema_version:
            raise ShadowConfigError("Shadow config requires a non-empty '$schemaVersion' string")

        raw_resources = doc.get("resources")
        if not isinstance(raw_resources, dict) or not raw_resources:
            raise ShadowConfigError("Shadow config requires a non-empty 'resources' object")

        database = doc.get("database", {})
        if not isinstance(database, dict):
            raise ShadowConfigError("'database' must be an object")

        generated_from = doc.get("$generatedFrom")
        if generated_from is not None and not isinstance(generated_from, str):
            raise ShadowConfigError("'$generatedFrom' must be a string")

        resources = {
            name: _parse_resource(name, raw)
            for name, raw in raw_resources.items()
        }

        return cls(
            schema_version=schema_version,
            resources=resources,
            database=database,
            generated_from=generated_from,
        )

    @classmethod
    def from_json(cls, text: str) -> "ShadowConfig":
        """Parse a config from a JSON string."""
        try:
            doc = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ShadowConfigError(f"Shadow config is not valid JSON: {e}") from e
        return cls.from_dict(doc)

    @classmethod
    def from_base64(cls, blob: str) -> "ShadowConfig":
        """
        Parse a config from its base64-encoded deployment blob.

        Raises:
            ShadowConfigError: If the blob is not base64, UTF-8 or JSON
        """
        if not blob or not isinstance(blob, str):
            raise ShadowConfigError("Shadow config blob is empty")

        try:
            raw = base64.b64decode(blob, validate=True)
            text = raw.decode("utf-8")
        except (binascii.Error, ValueError) as e:
            raise ShadowConfigError(f"Shadow config blob is not valid base64 UTF-8: {e}") from e

        config = cls.from_json(text)
        logger.debug(
            f"Loaded shadow config version {config.schema_version} "
            f"with resources: {', '.join(config.resources)}"
        )
        return config

    def get_resource(self, name: str) -> ResourceSchema:
        """
        Look up the schema for a resource.

        Raises:
            ShadowConfigError: If the resource is not configured
        """
        try:
            return self.resources[name]
        except KeyError:
            raise ShadowConfigError(
                f"Resource '{name}' not found in shadow config. "
                f"Available resources: {', '.join(sorted(self.resources))}"
            ) from None

    def to_dict(self) -> Dict[str, Any]:
        """Render the full config document."""
        doc: Dict[str, Any] = {"$schemaVersion": self.schema_version}
        if self.generated_from is not None:
            doc["$generatedFrom"] = self.generated_from
        if self.database:
            doc["database"] = self.database
        doc["resources"] = {
            name: resource.to_dict() for name, resource in self.resources.items()
        }
        return doc


def _parse_resource(name: Any, raw: Any) -> ResourceSchema:
    if not isinstance(name, str) or not name:
        raise ShadowConfigError("Resource names must be non-empty strings")

    if not isinstance(raw, dict):
        raise ShadowConfigError(f"Resource '{name}' must be an object")

    shadows = raw.get("shadows", {})
    if not isinstance(shadows, dict):
        raise ShadowConfigError(f"Resource '{name}': 'shadows' must be an object")

    sortable_fields: Dict[str, FieldType] = {}
    for field_name, definition in shadows.items():
        _validate_field_name(name, field_name)

        if not isinstance(definition, dict) or "type" not in definition:
            raise ShadowConfigError(
                f"Resource '{name}': field '{field_name}' must be an object with a 'type'"
            )

        try:
            sortable_fields[field_name] = FieldType(definition["type"])
        except ValueError:
            valid = [t.value for t in FieldType]
            raise ShadowConfigError(
                f"Resource '{name}': field '{field_name}' has invalid type "
                f"{definition['type']!r}. Must be one of {valid}"
            ) from None

    sort_defaults = None
    raw_sort = raw.get("sortDefaults")
    if raw_sort is not None:
        if not isinstance(raw_sort, dict):
            raise ShadowConfigError(f"Resource '{name}': 'sortDefaults' must be an object")
        sort_field = raw_sort.get("field")
        if sort_field not in sortable_fields:
            raise ShadowConfigError(
                f"Resource '{name}': sort default field {sort_field!r} is not a sortable field"
            )
        try:
            order = SortOrder(raw_sort.get("order", "ASC"))
        except ValueError:
            raise ShadowConfigError(
                f"Resource '{name}': sort order must be 'ASC' or 'DESC'"
            ) from None
        sort_defaults = SortDefaults(field=sort_field, order=order)

    ttl_days = None
    raw_ttl = raw.get("ttl")
    if raw_ttl is not None:
        days = raw_ttl.get("days") if isinstance(raw_ttl, dict) else None
        if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
            raise ShadowConfigError(
                f"Resource '{name}': 'ttl.days' must be a positive integer"
            )
        ttl_days = days

    return ResourceSchema(
        name=name,
        sortable_fields=sortable_fields,
        sort_defaults=sort_defaults,
        ttl_days=ttl_days,
    )


def _validate_field_name(resource: str, field_name: Any) -> None:
    if not isinstance(field_name, str) or not field_name:
        raise ShadowConfigError(f"Resource '{resource}': field names must be non-empty strings")

    # Shadow keys start with the field name; "id" would collide with primary keys
    if field_name == PRIMARY_KEY_PREFIX.rstrip(KEY_SEPARATOR):
        raise ShadowConfigError(f"Resource '{resource}': 'id' cannot be a sortable field")

    if KEY_SEPARATOR in field_name:
        raise ShadowConfigError(
            f"Resource '{resource}': field name '{field_name}' must not contain '{KEY_SEPARATOR}'"
        )
