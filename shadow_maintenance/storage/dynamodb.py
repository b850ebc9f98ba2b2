"""
DynamoDB Shadow Table

Single-table DynamoDB implementation of ShadowTable. Primary records live at
``PK=<resource>, SK=id#<id>`` with their fields under a ``data`` map; shadow
records share the partition with field-prefixed sort keys.
"""

import logging
from typing import Any, Dict, List, Optional

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import BotoCoreError, ClientError

from shadow_maintenance.shadows.schema import PRIMARY_KEY_PREFIX
from shadow_maintenance.storage.base import (
    MAX_TRANSACTION_ITEMS,
    ScanPage,
    ShadowTable,
    StorageError,
    TransactionConflictError,
    TransactionError,
    TransactionValidationError,
)

logger = logging.getLogger(__name__)

CONFLICT_ERROR_CODES = ("TransactionCanceledException", "TransactionConflictException")


class DynamoDBShadowTable(ShadowTable):
    """ShadowTable backed by a boto3 DynamoDB client."""

    def __init__(self, client, table_name: str, page_size: Optional[int] = None):
        """
        Initialize the table adapter.

        Args:
            client: boto3 DynamoDB client
            table_name: DynamoDB table name
            page_size: Optional scan ``Limit`` per page
        """
        self.client = client
        self.table_name = table_name
        self.page_size = page_size
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()
        logger.debug(f"Initialized DynamoDBShadowTable for {table_name}")

    def scan_page(
        self,
        resource: str,
        segment: int,
        total_segments: int,
        start_key: Optional[Dict[str, Any]] = None
    ) -> ScanPage:
        params: Dict[str, Any] = {
            "TableName": self.table_name,
            "Segment": segment,
            "TotalSegments": total_segments,
            "FilterExpression": "PK = :resource AND begins_with(SK, :idPrefix)",
            "ExpressionAttributeValues": {
                ":resource": {"S": resource},
                ":idPrefix": {"S": PRIMARY_KEY_PREFIX},
            },
        }
        if self.page_size:
            params["Limit"] = self.page_size
        if start_key:
            params["ExclusiveStartKey"] = start_key

        try:
            response = self.client.scan(**params)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Scan failed for {resource} segment {segment}/{total_segments}: {e}")
            raise StorageError(f"Scan failed for segment {segment}: {e}") from e

        items = [self.deserialize_item(item) for item in response.get("Items", [])]
        return ScanPage(items=items, last_evaluated_key=response.get("LastEvaluatedKey"))

    def transact_write(self, actions: List[Dict[str, Any]]) -> None:
        if len(actions) > MAX_TRANSACTION_ITEMS:
            raise TransactionValidationError(
                f"Too many transaction items: {len(actions)}. Maximum is {MAX_TRANSACTION_ITEMS}."
            )

        transact_items = [self.build_transact_item(action) for action in actions]

        try:
            self.client.transact_write_items(TransactItems=transact_items)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "")
            message = f"{error_code}: {e}"
            if error_code in CONFLICT_ERROR_CODES:
                raise TransactionConflictError(message) from e
            if error_code == "ValidationException":
                raise TransactionValidationError(message) from e
            raise TransactionError(message) from e
        except BotoCoreError as e:
            raise TransactionError(f"Transaction write failed: {e}") from e

    def build_transact_item(self, action: Dict[str, Any]) -> Dict[str, Any]:
        """
        Translate a repair action into a TransactWriteItems entry.

        Raises:
            TransactionValidationError: If the action type is unknown
        """
        action_type = action.get("action_type")

        if action_type == "DELETE":
            return {
                "Delete": {
                    "TableName": self.table_name,
                    "Key": self.serialize_item(action["key"]),
                }
            }

        if action_type == "PUT":
            return {
                "Put": {
                    "TableName": self.table_name,
                    "Item": self.serialize_item(action["item"]),
                }
            }

        if action_type == "UPDATE":
            names = {"#data": "data", "#pk": "PK"}
            values = {}
            assignments = []
            for i, (attribute, value) in enumerate(action["set"].items()):
                names[f"#f{i}"] = attribute
                values[f":v{i}"] = self._serializer.serialize(value)
                assignments.append(f"#data.#f{i} = :v{i}")

            return {
                "Update": {
                    "TableName": self.table_name,
                    "Key": self.serialize_item(action["key"]),
                    "UpdateExpression": "SET " + ", ".join(assignments),
                    "ConditionExpression": "attribute_exists(#pk)",
                    "ExpressionAttributeNames": names,
                    "ExpressionAttributeValues": values,
                }
            }

        raise TransactionValidationError(f"Unknown repair action type: {action_type!r}")

    def serialize_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._serializer.serialize(value) for key, value in item.items()}

    def deserialize_item(self, item: Dict[str, Any]) -> Dict[str, Any]:
        return {key: self._deserializer.deserialize(value) for key, value in item.items()}
