"""
Unit tests for drift detection.

Tests reason precedence and record shape handling.
"""

import pytest

from shadow_maintenance.reconciliation.detector import (
    DriftDetector,
    DriftReason,
    RecordShapeError,
    record_data_of,
    record_id_of,
)
from shadow_maintenance.shadows.fingerprint import fingerprint
from shadow_maintenance.shadows.generator import ShadowGenerationError, generate_shadow_keys


class TestDriftDetector:
    """Test drift classification."""

    @pytest.fixture
    def detector(self):
        return DriftDetector()

    @pytest.fixture
    def current_hash(self, shadow_config):
        return fingerprint(shadow_config)

    @pytest.fixture
    def consistent_article(self, sample_article, articles_schema, current_hash):
        sample_article["data"]["__shadowKeys"] = generate_shadow_keys(
            "a1", sample_article["data"], articles_schema
        )
        sample_article["data"]["__configVersion"] = "1.0"
        sample_article["data"]["__configHash"] = current_hash
        return sample_article

    def test_consistent_record_has_no_drift(self, detector, consistent_article,
                                            articles_schema, current_hash):
        result = detector.detect(consistent_article, articles_schema, current_hash)

        assert result.has_drift is False
        assert result.reason is DriftReason.NONE
        assert result.expected_keys == result.actual_keys

    def test_missing_config_hash(self, detector, sample_article, articles_schema, current_hash):
        result = detector.detect(sample_article, articles_schema, current_hash)

        assert result.has_drift is True
        assert result.reason is DriftReason.MISSING_CONFIG_HASH
        assert result.actual_keys == []
        assert len(result.expected_keys) == 4

    def test_config_hash_mismatch(self, detector, consistent_article, articles_schema):
        result = detector.detect(consistent_article, articles_schema, "0" * 64)

        assert result.has_drift is True
        assert result.reason is DriftReason.CONFIG_HASH_MISMATCH

    def test_shadow_keys_mismatch(self, detector, consistent_article, articles_schema, current_hash):
        consistent_article["data"]["title"] = "Renamed"

        result = detector.detect(consistent_article, articles_schema, current_hash)

        assert result.reason is DriftReason.SHADOW_KEYS_MISMATCH
        assert "title#Renamed\x00#id#a1" in result.expected_keys
        assert "title#Hello\x00#id#a1" in result.actual_keys

    def test_key_order_matters(self, detector, consistent_article, articles_schema, current_hash):
        consistent_article["data"]["__shadowKeys"].reverse()

        result = detector.detect(consistent_article, articles_schema, current_hash)

        assert result.reason is DriftReason.SHADOW_KEYS_MISMATCH

    def test_missing_hash_wins_over_key_mismatch(self, detector, consistent_article,
                                                 articles_schema, current_hash):
        del consistent_article["data"]["__configHash"]
        consistent_article["data"]["__shadowKeys"] = ["stale#key#id#a1"]

        result = detector.detect(consistent_article, articles_schema, current_hash)

        assert result.reason is DriftReason.MISSING_CONFIG_HASH

    def test_hash_mismatch_wins_over_key_mismatch(self, detector, consistent_article, articles_schema):
        consistent_article["data"]["__shadowKeys"] = []

        result = detector.detect(consistent_article, articles_schema, "other")

        assert result.reason is DriftReason.CONFIG_HASH_MISMATCH

    def test_record_without_shadowable_fields(self, detector, record_factory,
                                              articles_schema, current_hash):
        record = record_factory("a9", body="no sortable fields")
        record["data"]["__configHash"] = current_hash
        record["data"]["__shadowKeys"] = []

        result = detector.detect(record, articles_schema, current_hash)

        assert result.has_drift is False
        assert result.expected_keys == []

    def test_unencodable_value_raises(self, detector, record_factory, articles_schema, current_hash):
        record = record_factory("a10", views=-5)

        with pytest.raises(ShadowGenerationError):
            detector.detect(record, articles_schema, current_hash)

    def test_malformed_shadow_keys_raise(self, detector, consistent_article,
                                         articles_schema, current_hash):
        consistent_article["data"]["__shadowKeys"] = "title#Hello#id#a1"

        with pytest.raises(RecordShapeError):
            detector.detect(consistent_article, articles_schema, current_hash)


class TestRecordHelpers:
    """Test primary record accessors."""

    def test_record_id_of(self, record_factory):
        assert record_id_of(record_factory("abc-123")) == "abc-123"

    def test_record_id_of_rejects_shadow_key(self):
        with pytest.raises(RecordShapeError):
            record_id_of({"PK": "articles", "SK": "title#Hello#id#a1"})

    def test_record_data_of_missing(self):
        assert record_data_of({"PK": "articles", "SK": "id#a1"}) == {}

    def test_record_data_of_rejects_non_map(self):
        with pytest.raises(RecordShapeError):
            record_data_of({"PK": "articles", "SK": "id#a1", "data": "x"})
