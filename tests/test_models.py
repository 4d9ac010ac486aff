# /// script
# requires-python = ">=3.11"
# dependencies = [
#     "pytest",
# ]
# ///
"""
Unit tests for models.py.

Tests for:
- NotDuplicatePair / Pair: identifier ordering and equality
- Pair.score: exact, similar and missing distances
- DuplicateScanConfig: defaults
- DuplicateScanResult.to_dict: report layout
"""

import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from coverscan.models import (
    MISSING_DISTANCE,
    DuplicateScanConfig,
    DuplicateScanResult,
    DuplicateScanStats,
    FingerprintCrop,
    FingerprintKind,
    FingerprintResult,
    NotDuplicatePair,
    Pair,
    PairReason,
)


class TestNotDuplicatePair:
    """Tests for not-duplicate decisions."""

    def test_ids_are_ordered(self):
        pair = NotDuplicatePair("b", "a")
        assert (pair.arcid_a, pair.arcid_b) == ("a", "b")
        assert pair.key == ("a", "b")

    def test_order_of_arguments_does_not_matter(self):
        assert NotDuplicatePair("x", "y") == NotDuplicatePair("y", "x")
        assert hash(NotDuplicatePair("x", "y")) == hash(NotDuplicatePair("y", "x"))
        assert len({NotDuplicatePair("x", "y"), NotDuplicatePair("y", "x")}) == 1

    def test_timestamp_ignored_in_equality(self):
        assert NotDuplicatePair("a", "b", created_at=1) == NotDuplicatePair("a", "b", created_at=2)

    def test_ordering_is_by_code_point(self):
        """Uppercase sorts before lowercase."""
        pair = NotDuplicatePair("abc", "ABD")
        assert pair.key == ("ABD", "abc")


class TestPair:
    """Tests for scored duplicate pairs."""

    def test_ids_are_ordered(self):
        pair = Pair("zz", "aa", PairReason.EXACT_COVER)
        assert pair.key == ("aa", "zz")

    def test_exact_scores_zero(self):
        assert Pair("a", "b", PairReason.EXACT_COVER).score == 0
        assert Pair("a", "b", PairReason.EXACT_COVER, 10, 10).score == 0

    def test_similar_score_is_sum(self):
        assert Pair("a", "b", PairReason.SIMILAR_COVER, 3, 2).score == 5
        assert Pair("a", "b", PairReason.SIMILAR_COVER, 0, 0).score == 0

    def test_missing_distance_counts_as_99(self):
        assert MISSING_DISTANCE == 99
        assert Pair("a", "b", PairReason.SIMILAR_COVER, None, 4).score == 103
        assert Pair("a", "b", PairReason.SIMILAR_COVER).score == 198

    def test_exact_sorts_before_similar_at_equal_score(self):
        exact = Pair("m", "n", PairReason.EXACT_COVER)
        similar = Pair("a", "b", PairReason.SIMILAR_COVER, 0, 0)
        assert sorted([similar, exact], key=Pair.sort_key) == [exact, similar]

    def test_reason_values(self):
        assert PairReason.EXACT_COVER.value == "exact_cover"
        assert PairReason.SIMILAR_COVER.value == "similar_cover"


class TestDuplicateScanConfig:
    """Tests for scan configuration."""

    def test_defaults(self):
        config = DuplicateScanConfig()
        assert config.include_exact_checksum is True
        assert config.include_approximate is True
        assert config.dhash_threshold == 6
        assert config.ahash_threshold == 6
        assert config.bucket_max_size == 64

    def test_zero_thresholds_allowed(self):
        config = DuplicateScanConfig(dhash_threshold=0, ahash_threshold=0)
        assert config.dhash_threshold == 0

    def test_any_bucket_size_accepted(self):
        """Small bucket sizes are left to the scan, which skips every bucket."""
        for size in (0, 1):
            assert DuplicateScanConfig(bucket_max_size=size).bucket_max_size == size


class TestFingerprintResult:
    """Tests for hasher output."""

    def make_result(self):
        records = [
            (kind, crop, int(crop) * 10 + int(kind))
            for crop in FingerprintCrop
            for kind in FingerprintKind
        ]
        return FingerprintResult(aspect_ratio=0.7, checksum=b"\x01" * 32, records=records)

    def test_to_records(self):
        records = self.make_result().to_records("default", "arc1", 1700000000)
        assert len(records) == 6
        assert {r.arcid for r in records} == {"arc1"}
        assert all(r.thumb_checksum == b"\x01" * 32 for r in records)
        assert all(r.aspect_ratio == 0.7 for r in records)
        assert [(r.kind, r.crop) for r in records][:2] == [
            (FingerprintKind.DHASH, FingerprintCrop.FULL),
            (FingerprintKind.AHASH, FingerprintCrop.FULL),
        ]


class TestDuplicateScanResult:
    """Tests for the JSON report layout."""

    def test_to_dict(self):
        result = DuplicateScanResult(
            groups=[["a", "b"]],
            pairs=[Pair("b", "a", PairReason.SIMILAR_COVER, 3, 2)],
            stats=DuplicateScanStats(items=2, approximate_candidates=1, approximate_edges=1),
        )
        data = result.to_dict()
        assert data["groups"] == [["a", "b"]]
        assert data["pairs"] == [{
            "arcid_a": "a",
            "arcid_b": "b",
            "reason": "similar_cover",
            "score": 5,
            "dhash_distance": 3,
            "ahash_distance": 2,
        }]
        assert data["stats"]["items"] == 2
        assert data["stats"]["approximate_edges"] == 1
        assert data["stats"]["skipped_buckets"] == 0
