"""Tests for baseline entity and comparison models."""

import pytest
from pydantic import ValidationError

from baseline_engine.models.baseline import (
    Baseline,
    BaselineIndex,
    BaselineMetadata,
    BaselineQuery,
    ComparisonOutcome,
    ComparisonState,
    DiffRegion,
    FetchOutcome,
    FetchStatus,
    StorageRef,
    ViewportSize,
)


class TestBaselineMetadata:
    """Tests for BaselineMetadata model."""

    def test_accepts_alias_and_field_name(self):
        """Test prNumber alias and pr_number field name both populate."""
        assert BaselineMetadata(commit="a", prNumber=5).pr_number == 5
        assert BaselineMetadata(commit="a", pr_number=6).pr_number == 6

    def test_optional_fields(self):
        """Test author, PR number and tags are optional."""
        meta = BaselineMetadata(commit="abc")
        assert meta.author == ""
        assert meta.pr_number is None
        assert meta.tags is None


class TestBaseline:
    """Tests for Baseline model serialization."""

    def test_serializes_with_camel_case_aliases(self, make_baseline):
        """Test index serialization uses createdAt/updatedAt/prNumber."""
        data = make_baseline("abc", updated_at=42).model_dump(mode="json", by_alias=True)
        assert data["createdAt"] == 42
        assert data["updatedAt"] == 42
        assert "prNumber" in data["metadata"]
        assert data["storage"]["provider"] == "memory"

    def test_round_trip_through_json(self, make_baseline):
        """Test a baseline survives JSON serialization."""
        baseline = make_baseline("abc", tags=["stable"])
        restored = Baseline.model_validate_json(baseline.model_dump_json(by_alias=True))
        assert restored == baseline

    def test_unknown_storage_provider_rejected(self):
        """Test storage provider must be a known backend."""
        with pytest.raises(ValidationError):
            StorageRef(provider="ftp", path="x")


class TestBaselineIndex:
    """Tests for BaselineIndex model."""

    def test_defaults(self):
        """Test an empty index document."""
        index = BaselineIndex()
        assert index.version == "1.0"
        assert index.count == 0
        assert index.baselines == []

    def test_parses_stored_document(self, make_baseline):
        """Test parsing the persisted camelCase document."""
        doc = {
            "version": "1.0",
            "updatedAt": "2024-01-01T00:00:00Z",
            "count": 1,
            "baselines": [make_baseline("abc").model_dump(mode="json", by_alias=True)],
        }
        index = BaselineIndex.model_validate(doc)
        assert index.updated_at == "2024-01-01T00:00:00Z"
        assert index.baselines[0].id == "abc"


class TestQueryAndResults:
    """Tests for query and result models."""

    def test_query_defaults(self):
        """Test default pagination."""
        query = BaselineQuery()
        assert query.limit == 10
        assert query.offset == 0
        assert query.repository is None

    def test_diff_region_type(self):
        """Test region type is restricted to added/removed/changed."""
        assert DiffRegion(x=0, y=0, width=1, height=1).type == "changed"
        with pytest.raises(ValidationError):
            DiffRegion(x=0, y=0, width=1, height=1, type="moved")

    def test_viewport_size_key(self):
        """Test viewport key format."""
        assert ViewportSize(width=768, height=1024).key == "768x1024"

    def test_comparison_outcome_default_state(self):
        """Test outcomes are plain comparisons unless stated otherwise."""
        outcome = ComparisonOutcome(has_difference=False, diff_percentage=0)
        assert outcome.state == ComparisonState.COMPARED
        assert outcome.diff_image is None

    def test_fetch_outcome(self):
        """Test fetch outcome distinguishes absent from error."""
        assert FetchOutcome(status=FetchStatus.ABSENT).data is None
        assert FetchOutcome(status="error", error="boom").status == FetchStatus.ERROR
