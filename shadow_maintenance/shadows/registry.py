"""
Resource Definitions and Shadow Config Generation

The resource definitions below are the single source of truth for which
fields get shadow records. ``build_shadow_config`` turns them into the
shadow config document deployed to the maintenance workers.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from shadow_maintenance.shadows.schema import ShadowConfig, ShadowConfigError

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_VERSION = "1.0"
GENERATED_FROM = "shadow_maintenance/shadows/registry.py (RESOURCE_DEFINITIONS)"
DEFAULT_TIMESTAMPS = {"createdAt": "createdAt", "updatedAt": "updatedAt"}


@dataclass(frozen=True)
class ResourceDefinition:
    """Declared sortable fields of a resource."""

    resource: str
    sortable_fields: Dict[str, str]
    ttl_days: Optional[int] = None


ARTICLES = ResourceDefinition(
    resource="articles",
    sortable_fields={
        "title": "string",
        "status": "string",
        "author": "string",
        "createdAt": "datetime",
        "updatedAt": "datetime",
    },
)

TASKS = ResourceDefinition(
    resource="tasks",
    sortable_fields={
        "title": "string",
        "status": "string",
        "priority": "string",
        "dueDate": "datetime",
        "createdAt": "datetime",
        "updatedAt": "datetime",
    },
)

RESOURCE_DEFINITIONS = (ARTICLES, TASKS)


def default_sort(sortable_fields: Dict[str, str]) -> Dict[str, str]:
    """updatedAt DESC when sortable, otherwise the first field ASC."""
    if "updatedAt" in sortable_fields:
        return {"field": "updatedAt", "order": "DESC"}
    return {"field": next(iter(sortable_fields)), "order": "ASC"}


def build_shadow_config(
    definitions: Iterable[ResourceDefinition] = RESOURCE_DEFINITIONS,
    schema_version: str = DEFAULT_SCHEMA_VERSION,
    timestamps: Optional[Dict[str, str]] = None,
    generated_from: str = GENERATED_FROM
) -> Dict[str, Any]:
    """
    Build the shadow config document from resource definitions.

    Args:
        definitions: Resource definitions to include
        schema_version: Value for ``$schemaVersion``
        timestamps: Database timestamp field names
        generated_from: Value for ``$generatedFrom``

    Returns:
        Shadow config document, validated against the schema registry

    Raises:
        ShadowConfigError: If the definitions produce an invalid config
    """
    timestamps = DEFAULT_TIMESTAMPS if timestamps is None else timestamps
    if not timestamps or "createdAt" not in timestamps or "updatedAt" not in timestamps:
        raise ShadowConfigError("Database timestamps configuration is required")

    resources: Dict[str, Any] = {}
    for definition in definitions:
        if not definition.sortable_fields:
            raise ShadowConfigError(
                f"Resource '{definition.resource}' declares no sortable fields"
            )
        if definition.resource in resources:
            raise ShadowConfigError(f"Duplicate resource definition: {definition.resource}")

        resource: Dict[str, Any] = {
            "shadows": {
                name: {"type": field_type}
                for name, field_type in definition.sortable_fields.items()
            },
            "sortDefaults": default_sort(definition.sortable_fields),
        }
        if definition.ttl_days is not None:
            resource["ttl"] = {"days": definition.ttl_days}

        resources[definition.resource] = resource

    document = {
        "$schemaVersion": schema_version,
        "$generatedFrom": generated_from,
        "database": {"timestamps": dict(timestamps)},
        "resources": resources,
    }

    # Round-trip through the registry so a bad definition fails here, not in a worker
    ShadowConfig.from_dict(document)

    logger.info(f"Built shadow config for resources: {', '.join(resources)}")
    return document


def encode_config(document: Dict[str, Any]) -> str:
    """Encode a shadow config document as the base64 deployment blob."""
    text = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def write_shadow_config(document: Dict[str, Any], output_path: str) -> None:
    """Write a shadow config document as pretty-printed JSON."""
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(document, f, indent=2, ensure_ascii=False)
        f.write("\n")

    logger.info(f"Shadow config written to {output_path}")
