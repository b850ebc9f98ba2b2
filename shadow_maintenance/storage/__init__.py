"""
Storage Module for Shadow Maintenance

Segmented table scans and atomic multi-item writes.
"""

from shadow_maintenance.storage.base import (
    MAX_TRANSACTION_ITEMS,
    ScanPage,
    ShadowTable,
    StorageError,
    TransactionConflictError,
    TransactionError,
    TransactionValidationError,
)
from shadow_maintenance.storage.dynamodb import DynamoDBShadowTable

__all__ = [
    "MAX_TRANSACTION_ITEMS",
    "ScanPage",
    "ShadowTable",
    "StorageError",
    "TransactionConflictError",
    "TransactionError",
    "TransactionValidationError",
    "DynamoDBShadowTable",
]
