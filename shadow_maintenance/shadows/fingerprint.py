"""
Config Fingerprinting

Derives a stable content hash from the shadow configuration so workers can
cheaply tell whether a record's shadows were built against the schema they
have loaded.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Union

from shadow_maintenance.shadows.schema import ShadowConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigFingerprint:
    """Schema version and content hash active for one invocation."""

    version: str
    hash: str

    @classmethod
    def of(cls, config: ShadowConfig) -> "ConfigFingerprint":
        return cls(version=config.schema_version, hash=fingerprint(config))


def canonical_json(document: Dict[str, Any]) -> str:
    """Serialize a document with sorted keys and no insignificant whitespace."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def fingerprint(config: Union[ShadowConfig, Dict[str, Any]]) -> str:
    """
    Compute the SHA-256 fingerprint of a shadow configuration.

    Mapping order does not affect the result; any change to the field set,
    a field type, TTL or the schema version does.

    Args:
        config: ShadowConfig or its document form

    Returns:
        Hex digest
    """
    document = config.to_dict() if isinstance(config, ShadowConfig) else config
    digest = hashlib.sha256(canonical_json(document).encode("utf-8")).hexdigest()
    logger.debug(f"Computed config fingerprint: {digest}")
    return digest
