"""
Shadow Repairer for Shadow Maintenance

Computes the minimal set of shadow deletions and insertions for a drifted
record, plus the update of its shadow metadata, and applies them as one
atomic transaction.
"""

import logging
from typing import Any, Dict, List, Optional

from shadow_maintenance.reconciliation.detector import (
    CONFIG_HASH_ATTR,
    CONFIG_VERSION_ATTR,
    SHADOW_KEYS_ATTR,
    record_data_of,
    record_id_of,
)
from shadow_maintenance.shadows.generator import generate_shadow_records, is_owned_shadow_key
from shadow_maintenance.shadows.schema import ResourceSchema
from shadow_maintenance.storage.base import MAX_TRANSACTION_ITEMS, ShadowTable

logger = logging.getLogger(__name__)


class RepairError(Exception):
    """Raised when a repair cannot be attempted; nothing was written."""

    code = "VALIDATION_ERROR"
    retryable = False


class TransactionTooLargeError(RepairError):
    """Raised when a repair needs more items than one transaction allows."""

    def __init__(self, item_count: int, limit: int = MAX_TRANSACTION_ITEMS):
        self.item_count = item_count
        self.limit = limit
        super().__init__(
            f"Too many transaction items: {item_count}. Maximum is {limit}. "
            f"Repair cannot be applied atomically."
        )


class UnexpectedShadowKeysError(RepairError):
    """Raised when regenerated shadow keys differ from the detected ones."""


class ShadowRepairer:
    """
    Generates and applies shadow repair transactions.

    Action order within a transaction: DELETE stale shadows, PUT missing
    shadows, UPDATE the primary record's shadow metadata.
    """

    def __init__(self, table: ShadowTable, max_items: int = MAX_TRANSACTION_ITEMS):
        """
        Initialize the shadow repairer.

        Args:
            table: Table to write repairs to
            max_items: Transaction item cap of the storage layer
        """
        self.table = table
        self.max_items = max_items
        logger.debug(f"Initialized ShadowRepairer (max {max_items} items per transaction)")

    def generate_delete_actions(
        self,
        resource: str,
        expected_keys: List[str],
        actual_keys: List[str],
        record_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """
        DELETE actions for shadow keys that should no longer exist.

        Keys recorded in ``__shadowKeys`` are only deleted when they name a
        shadow of this record; primary keys and other records' shadows are
        dropped from the metadata without touching the item.
        """
        expected = set(expected_keys)
        actions = []

        for key in _unique(actual_keys):
            if key in expected:
                continue
            if record_id is not None and not is_owned_shadow_key(key, record_id):
                logger.warning(f"Skipping delete of {key!r}: not a shadow key of record {record_id}")
                continue
            actions.append({"action_type": "DELETE", "key": {"PK": resource, "SK": key}})

        return actions


    def generate_put_actions(
        self,
        record: Dict[str, Any],
        expected_keys: List[str],
        actual_keys: List[str],
        schema: ResourceSchema
    ) -> List[Dict[str, Any]]:
        """
        PUT actions for shadow records that are missing.

        Raises:
            UnexpectedShadowKeysError: If regeneration disagrees with expected_keys
        """
        record_id = record_id_of(record)
        shadow_records = generate_shadow_records(record_id, record_data_of(record), schema)

        generated_keys = [shadow["SK"] for shadow in shadow_records]
        if generated_keys != list(expected_keys):
            raise UnexpectedShadowKeysError(
                f"Record {record_id}: regenerated shadow keys {generated_keys} "
                f"do not match expected keys {list(expected_keys)}"
            )

        actual = set(actual_keys)
        return [
            {"action_type": "PUT", "item": {**shadow, "PK": record["PK"]}}
            for shadow in shadow_records
            if shadow["SK"] not in actual
        ]

    def generate_metadata_update(
        self,
        record: Dict[str, Any],
        expected_keys: List[str],
        config_version: str,
        config_hash: str
    ) -> Dict[str, Any]:
        """UPDATE action writing the record's shadow metadata."""
        return {
            "action_type": "UPDATE",
            "key": {"PK": record["PK"], "SK": record["SK"]},
            "set": {
                SHADOW_KEYS_ATTR: list(expected_keys),
                CONFIG_VERSION_ATTR: config_version,
                CONFIG_HASH_ATTR: config_hash,
            },
        }

    def generate_repair_actions(
        self,
        record: Dict[str, Any],
        expected_keys: List[str],
        actual_keys: List[str],
        config_version: str,
        config_hash: str,
        schema: ResourceSchema
    ) -> List[Dict[str, Any]]:
        """
        Generate the full transaction for one record.

        Args:
            record: Primary record item
            expected_keys: Shadow keys the current schema generates
            actual_keys: Shadow keys recorded on the record
            config_version: Current schema version
            config_hash: Current config fingerprint
            schema: Shadow schema of the record's resource

        Returns:
            Ordered list of repair actions
        """
        delete_actions = self.generate_delete_actions(
            record["PK"], expected_keys, actual_keys, record_id_of(record)
        )
        put_actions = self.generate_put_actions(record, expected_keys, actual_keys, schema)
        update_action = self.generate_metadata_update(
            record, expected_keys, config_version, config_hash
        )

        actions = delete_actions + put_actions + [update_action]

        logger.debug(
            f"Generated {len(actions)} repair actions for {record['SK']}: "
            f"{len(delete_actions)} DELETE, {len(put_actions)} PUT, 1 UPDATE"
        )
        return actions

    def repair(
        self,
        record: Dict[str, Any],
        expected_keys: List[str],
        actual_keys: List[str],
        config_version: str,
        config_hash: str,
        schema: ResourceSchema
    ) -> List[Dict[str, Any]]:
        """
        Repair a drifted record in a single transaction.

        Returns:
            The applied actions

        Raises:
            TransactionTooLargeError: If the transaction would exceed the item cap
            RepairError: If the repair cannot be generated
            TransactionError: If the storage layer rejects the transaction
        """
        actions = self.generate_repair_actions(
            record, expected_keys, actual_keys, config_version, config_hash, schema
        )

        # Transactions are never split
        if len(actions) > self.max_items:
            raise TransactionTooLargeError(len(actions), self.max_items)

        self.table.transact_write(actions)
        return actions


def _unique(keys: List[str]) -> List[str]:
    seen = set()
    unique = []
    for key in keys:
        if key not in seen:
            seen.add(key)
            unique.append(key)
    return unique
