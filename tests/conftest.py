"""
Pytest configuration and shared fixtures for unit and integration tests.

Provides an in-memory, segmented ShadowTable and shadow config fixtures so
maintenance runs can be exercised without DynamoDB.
"""

import copy
import threading
import zlib
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from shadow_maintenance.shadows.fingerprint import fingerprint
from shadow_maintenance.shadows.generator import generate_shadow_records
from shadow_maintenance.shadows.schema import PRIMARY_KEY_PREFIX, ShadowConfig
from shadow_maintenance.storage.base import (
    MAX_TRANSACTION_ITEMS,
    ScanPage,
    ShadowTable,
    TransactionConflictError,
    TransactionValidationError,
)


class InMemoryShadowTable(ShadowTable):
    """
    Dict-backed ShadowTable.

    Items are assigned to scan segments by a hash of their key. Page size
    applies before the primary-record filter, as a DynamoDB Limit does, so
    pages can come back empty while more items remain.
    """

    def __init__(self, page_size: int = 25):
        self.page_size = page_size
        self.items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self.scan_calls: List[Tuple[str, int, int]] = []
        self.transactions: List[List[Dict[str, Any]]] = []
        self.fail_when: Optional[Callable[[List[Dict[str, Any]]], Optional[Exception]]] = None
        self.scan_error: Optional[Exception] = None
        self._lock = threading.Lock()

    # Test helpers

    def put(self, item: Dict[str, Any]) -> None:
        self.items[(item["PK"], item["SK"])] = copy.deepcopy(item)

    def get(self, pk: str, sk: str) -> Optional[Dict[str, Any]]:
        item = self.items.get((pk, sk))
        return copy.deepcopy(item) if item is not None else None

    def shadow_keys(self, resource: str) -> List[str]:
        return sorted(
            sk for pk, sk in self.items
            if pk == resource and not sk.startswith(PRIMARY_KEY_PREFIX)
        )

    def primary_records(self, resource: str) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(item) for (pk, sk), item in sorted(self.items.items())
            if pk == resource and sk.startswith(PRIMARY_KEY_PREFIX)
        ]

    @staticmethod
    def segment_of(pk: str, sk: str, total_segments: int) -> int:
        return zlib.crc32(f"{pk}|{sk}".encode("utf-8")) % total_segments

    # ShadowTable

    def scan_page(self, resource, segment, total_segments, start_key=None):
        self.scan_calls.append((resource, segment, total_segments))
        if self.scan_error is not None:
            raise self.scan_error

        snapshot = self.items
        keys = sorted(
            key for key in snapshot
            if self.segment_of(key[0], key[1], total_segments) == segment
        )

        start = 0
        if start_key:
            last = (start_key["PK"], start_key["SK"])
            start = next((i for i, key in enumerate(keys) if key > last), len(keys))

        chunk = keys[start:start + self.page_size]
        items = [
            copy.deepcopy(snapshot[key]) for key in chunk
            if key[0] == resource and key[1].startswith(PRIMARY_KEY_PREFIX)
        ]

        last_evaluated_key = None
        if start + self.page_size < len(keys):
            last_evaluated_key = {"PK": chunk[-1][0], "SK": chunk[-1][1]}

        return ScanPage(items=items, last_evaluated_key=last_evaluated_key)

    def transact_write(self, actions):
        with self._lock:
            self._transact_write(actions)

    def _transact_write(self, actions):
        self.transactions.append(copy.deepcopy(actions))

        if len(actions) > MAX_TRANSACTION_ITEMS:
            raise TransactionValidationError(f"Too many transaction items: {len(actions)}")

        if self.fail_when is not None:
            error = self.fail_when(actions)
            if error is not None:
                raise error

        staged = copy.deepcopy(self.items)
        for action in actions:
            if action["action_type"] == "DELETE":
                staged.pop((action["key"]["PK"], action["key"]["SK"]), None)
            elif action["action_type"] == "PUT":
                item = action["item"]
                staged[(item["PK"], item["SK"])] = copy.deepcopy(item)
            elif action["action_type"] == "UPDATE":
                key = (action["key"]["PK"], action["key"]["SK"])
                if key not in staged:
                    raise TransactionConflictError(
                        f"TransactionCanceledException: ConditionalCheckFailed for {key}"
                    )
                data = staged[key].setdefault("data", {})
                for attribute, value in action["set"].items():
                    data[attribute] = copy.deepcopy(value)
            else:
                raise TransactionValidationError(f"Unknown action {action['action_type']}")

        self.items = staged


ARTICLES_DOC = {
    "$schemaVersion": "1.0",
    "database": {"timestamps": {"createdAt": "createdAt", "updatedAt": "updatedAt"}},
    "resources": {
        "articles": {
            "shadows": {
                "title": {"type": "string"},
                "views": {"type": "number"},
                "publishedAt": {"type": "datetime"},
                "featured": {"type": "boolean"},
            },
            "sortDefaults": {"field": "publishedAt", "order": "DESC"},
        },
        "tasks": {
            "shadows": {
                "title": {"type": "string"},
                "priority": {"type": "string"},
            },
            "ttl": {"days": 30},
        },
    },
}


def make_record(record_id: str, resource: str = "articles", **data) -> Dict[str, Any]:
    """Build a primary record item."""
    return {"PK": resource, "SK": f"{PRIMARY_KEY_PREFIX}{record_id}", "data": dict(data)}


def make_consistent(table: InMemoryShadowTable, config: ShadowConfig, record: Dict[str, Any]) -> None:
    """Store a record with shadows and metadata matching the config."""
    record = copy.deepcopy(record)
    schema = config.get_resource(record["PK"])
    record_id = record["SK"][len(PRIMARY_KEY_PREFIX):]
    shadows = generate_shadow_records(record_id, record["data"], schema)

    record["data"]["__shadowKeys"] = [shadow["SK"] for shadow in shadows]
    record["data"]["__configVersion"] = config.schema_version
    record["data"]["__configHash"] = fingerprint(config)

    table.put(record)
    for shadow in shadows:
        table.put(shadow)


@pytest.fixture
def shadow_config_doc():
    """Shadow config document with articles and tasks."""
    return copy.deepcopy(ARTICLES_DOC)


@pytest.fixture
def shadow_config(shadow_config_doc):
    """Parsed shadow config."""
    return ShadowConfig.from_dict(shadow_config_doc)


@pytest.fixture
def articles_schema(shadow_config):
    """Articles resource schema."""
    return shadow_config.get_resource("articles")


@pytest.fixture
def table():
    """Empty in-memory table with small pages."""
    return InMemoryShadowTable(page_size=5)


@pytest.fixture
def sample_article():
    """Primary record with every sortable field set."""
    return make_record(
        "a1",
        title="Hello",
        views=42,
        publishedAt="2024-03-01T12:00:00Z",
        featured=True,
    )


@pytest.fixture
def record_factory():
    """Factory for primary record items."""
    return make_record


@pytest.fixture
def store_consistent():
    """Store a record with shadows matching a config: fn(table, config, record)."""
    return make_consistent


@pytest.fixture
def table_factory():
    """Factory for in-memory tables with a given page size."""
    return InMemoryShadowTable
