"""
Drift Detector for Shadow Maintenance

Compares the shadow metadata stored on a primary record against what the
current shadow schema would generate and classifies the record as
consistent or drifted.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from shadow_maintenance.shadows.generator import ShadowGenerationError, generate_shadow_keys
from shadow_maintenance.shadows.schema import PRIMARY_KEY_PREFIX, ResourceSchema

logger = logging.getLogger(__name__)

SHADOW_KEYS_ATTR = "__shadowKeys"
CONFIG_VERSION_ATTR = "__configVersion"
CONFIG_HASH_ATTR = "__configHash"


class DriftReason(Enum):
    """Why a record was classified as drifted."""
    NONE = "none"
    MISSING_CONFIG_HASH = "missing_config_hash"
    CONFIG_HASH_MISMATCH = "config_hash_mismatch"
    SHADOW_KEYS_MISMATCH = "shadow_keys_mismatch"


class RecordShapeError(ShadowGenerationError):
    """Raised when a primary record does not have the expected item shape."""


@dataclass
class DriftResult:
    """Outcome of drift detection for one record."""

    has_drift: bool
    reason: DriftReason
    expected_keys: List[str] = field(default_factory=list)
    actual_keys: List[str] = field(default_factory=list)
    record_config_hash: Optional[str] = None


def record_id_of(record: Dict[str, Any]) -> str:
    """
    Extract the record id from a primary record's sort key.

    Raises:
        RecordShapeError: If the sort key is not a primary key
    """
    sort_key = record.get("SK")
    if not isinstance(sort_key, str) or not sort_key.startswith(PRIMARY_KEY_PREFIX):
        raise RecordShapeError(f"Not a primary record sort key: {sort_key!r}")
    return sort_key[len(PRIMARY_KEY_PREFIX):]


def record_data_of(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Return the record's ``data`` map (empty if absent).

    Raises:
        RecordShapeError: If ``data`` is present but not a map
    """
    data = record.get("data")
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise RecordShapeError(f"Record data must be a map, got {type(data).__name__}")
    return data


class DriftDetector:
    """
    Detects shadow drift on primary records.

    Precedence (first match wins):
    1. no ``__configHash`` on the record
    2. ``__configHash`` differs from the current fingerprint
    3. generated shadow keys differ position-wise from ``__shadowKeys``
    """

    def __init__(self):
        """Initialize the drift detector."""
        logger.debug("Initialized DriftDetector")

    def detect(
        self,
        record: Dict[str, Any],
        schema: ResourceSchema,
        current_config_hash: str
    ) -> DriftResult:
        """
        Classify a primary record.

        Args:
            record: Primary record item (PK, SK, data)
            schema: Shadow schema of the record's resource
            current_config_hash: Fingerprint of the loaded shadow config

        Returns:
            DriftResult with expected and actual shadow keys

        Raises:
            ShadowGenerationError: If the record cannot be evaluated
        """
        record_id = record_id_of(record)
        data = record_data_of(record)

        actual_keys = data.get(SHADOW_KEYS_ATTR) or []
        if not isinstance(actual_keys, list) or not all(isinstance(k, str) for k in actual_keys):
            raise RecordShapeError(
                f"Record {record_id}: {SHADOW_KEYS_ATTR} must be a list of strings"
            )

        record_config_hash = data.get(CONFIG_HASH_ATTR)
        expected_keys = generate_shadow_keys(record_id, data, schema)

        if not record_config_hash:
            reason = DriftReason.MISSING_CONFIG_HASH
        elif record_config_hash != current_config_hash:
            reason = DriftReason.CONFIG_HASH_MISMATCH
        elif actual_keys != expected_keys:
            reason = DriftReason.SHADOW_KEYS_MISMATCH
        else:
            reason = DriftReason.NONE

        return DriftResult(
            has_drift=reason is not DriftReason.NONE,
            reason=reason,
            expected_keys=expected_keys,
            actual_keys=list(actual_keys),
            record_config_hash=record_config_hash,
        )
