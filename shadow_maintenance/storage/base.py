"""
Storage Interface for Shadow Maintenance

Defines the two operations the maintenance engine needs from the table:
a segmented, paginated scan of primary records and an atomic multi-item
write. Repair actions are plain dicts:

- ``{"action_type": "DELETE", "key": {"PK", "SK"}}``
- ``{"action_type": "PUT", "item": {"PK", "SK", "data"}}``
- ``{"action_type": "UPDATE", "key": {"PK", "SK"}, "set": {attr: value}}``
  where ``set`` names attributes inside the record's ``data`` map and the
  record must already exist.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MAX_TRANSACTION_ITEMS = 100


class StorageError(Exception):
    """Raised when the table cannot be read; fatal to a segment scan."""

    code = "STORAGE_ERROR"


class TransactionError(Exception):
    """Raised when an atomic write is rejected; nothing was applied."""

    code = "TRANSACTION_FAILED"
    retryable = True


class TransactionConflictError(TransactionError):
    """Raised when a transaction is cancelled by a concurrent modification."""


class TransactionValidationError(TransactionError):
    """Raised when the storage layer rejects the shape of a transaction."""

    code = "VALIDATION_ERROR"
    retryable = False


@dataclass
class ScanPage:
    """One page of a segment scan."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    last_evaluated_key: Optional[Dict[str, Any]] = None

    @property
    def has_more(self) -> bool:
        return self.last_evaluated_key is not None


class ShadowTable(ABC):
    """Table holding primary records and their shadow records."""

    @abstractmethod
    def scan_page(
        self,
        resource: str,
        segment: int,
        total_segments: int,
        start_key: Optional[Dict[str, Any]] = None
    ) -> ScanPage:
        """
        Fetch one page of primary records from a scan segment.

        Only items whose PK is ``resource`` and whose SK starts with ``id#``
        are returned. For a fixed ``total_segments`` the segments are
        disjoint and together cover the whole partition.

        Raises:
            StorageError: If the page cannot be fetched
        """

    @abstractmethod
    def transact_write(self, actions: List[Dict[str, Any]]) -> None:
        """
        Apply repair actions atomically: all of them or none.

        Raises:
            TransactionError: If the write is rejected
        """
