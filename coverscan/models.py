"""Data model shared by the hasher, the store and the scan engine."""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional

from .config import AHASH_THRESHOLD, BUCKET_MAX_SIZE, DHASH_THRESHOLD


class FingerprintKind(IntEnum):
    """Perceptual hash family. Values are the stored integer codes."""

    DHASH = 0
    AHASH = 1


class FingerprintCrop(IntEnum):
    """Region of the cover a hash was computed from."""

    FULL = 0
    CENTER90 = 1
    CENTER75 = 2


@dataclass(frozen=True)
class FingerprintResult:
    """Output of fingerprinting one thumbnail."""

    aspect_ratio: float
    checksum: bytes  # SHA256 of the raw thumbnail bytes
    records: list[tuple[FingerprintKind, FingerprintCrop, int]]

    def to_records(self, profile_id: str, arcid: str, updated_at: int) -> list["FingerprintRecord"]:
        """Expand into one persistable record per (kind, crop)."""
        return [
            FingerprintRecord(
                profile_id=profile_id,
                arcid=arcid,
                kind=kind,
                crop=crop,
                hash64=value,
                aspect_ratio=self.aspect_ratio,
                thumb_checksum=self.checksum,
                updated_at=updated_at,
            )
            for kind, crop, value in self.records
        ]


@dataclass(frozen=True)
class FingerprintRecord:
    """One stored hash. Unique per (profile_id, arcid, kind, crop)."""

    profile_id: str
    arcid: str
    kind: FingerprintKind
    crop: FingerprintCrop
    hash64: int  # unsigned 64-bit
    aspect_ratio: float
    thumb_checksum: bytes
    updated_at: int  # unix seconds


@dataclass(frozen=True)
class ScanFingerprint:
    """Flattened per-archive view used by the scan (center-90% crop only)."""

    arcid: str
    checksum: bytes
    dhash_center90: int
    ahash_center90: int


@dataclass(frozen=True)
class NotDuplicatePair:
    """
    A user decision that two archives are not duplicates.

    The identifiers are always stored smallest-first, so equality and hashing
    do not depend on the order they were given in. The timestamp takes no part
    in equality.
    """

    arcid_a: str
    arcid_b: str
    created_at: int = field(default=0, compare=False)

    def __post_init__(self):
        if self.arcid_b < self.arcid_a:
            a, b = self.arcid_b, self.arcid_a
            object.__setattr__(self, "arcid_a", a)
            object.__setattr__(self, "arcid_b", b)

    @property
    def key(self) -> tuple[str, str]:
        return (self.arcid_a, self.arcid_b)


class PairReason(str, Enum):
    EXACT_COVER = "exact_cover"
    SIMILAR_COVER = "similar_cover"

    @property
    def rank(self) -> int:
        # exact sorts before similar at equal score
        return 0 if self is PairReason.EXACT_COVER else 1


# Stand-in distance when a similar pair lacks one
MISSING_DISTANCE = 99


@dataclass(frozen=True)
class Pair:
    """A proposed duplicate relationship, identifiers in canonical order."""

    arcid_a: str
    arcid_b: str
    reason: PairReason
    dhash_distance: Optional[int] = None
    ahash_distance: Optional[int] = None

    def __post_init__(self):
        if self.arcid_b < self.arcid_a:
            a, b = self.arcid_b, self.arcid_a
            object.__setattr__(self, "arcid_a", a)
            object.__setattr__(self, "arcid_b", b)

    @property
    def key(self) -> tuple[str, str]:
        return (self.arcid_a, self.arcid_b)

    @property
    def score(self) -> int:
        """Lower is more certain. Exact covers always score 0."""
        if self.reason is PairReason.EXACT_COVER:
            return 0
        d = self.dhash_distance if self.dhash_distance is not None else MISSING_DISTANCE
        a = self.ahash_distance if self.ahash_distance is not None else MISSING_DISTANCE
        return d + a

    def sort_key(self) -> tuple:
        return (self.score, self.reason.rank, self.arcid_a, self.arcid_b)


@dataclass(frozen=True)
class DuplicateScanConfig:
    """Tunables for one scan."""

    include_exact_checksum: bool = True
    include_approximate: bool = True
    dhash_threshold: int = DHASH_THRESHOLD
    ahash_threshold: int = AHASH_THRESHOLD
    bucket_max_size: int = BUCKET_MAX_SIZE  # larger LSH buckets are skipped


@dataclass(frozen=True)
class DuplicateScanStats:
    items: int = 0
    exact_groups: int = 0
    approximate_candidates: int = 0
    approximate_edges: int = 0
    skipped_buckets: int = 0
    excluded_not_duplicates: int = 0
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class DuplicateScanResult:
    groups: list[list[str]]  # each sorted, size ≥2
    pairs: list[Pair]  # sorted by score, reason, ids; unique per id pair
    stats: DuplicateScanStats

    def to_dict(self) -> dict:
        return {
            "groups": [list(g) for g in self.groups],
            "pairs": [
                {
                    "arcid_a": p.arcid_a,
                    "arcid_b": p.arcid_b,
                    "reason": p.reason.value,
                    "score": p.score,
                    "dhash_distance": p.dhash_distance,
                    "ahash_distance": p.ahash_distance,
                }
                for p in self.pairs
            ],
            "stats": {
                "items": self.stats.items,
                "exact_groups": self.stats.exact_groups,
                "approximate_candidates": self.stats.approximate_candidates,
                "approximate_edges": self.stats.approximate_edges,
                "skipped_buckets": self.stats.skipped_buckets,
                "excluded_not_duplicates": self.stats.excluded_not_duplicates,
                "duration_seconds": self.stats.duration_seconds,
            },
        }
