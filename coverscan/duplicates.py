"""
Duplicate scan over precomputed cover fingerprints.

Two passes feed one union-find:
- Exact: archives whose thumbnails have the same SHA256 are linked in a star
  around the first archive seen with that checksum.
- Approximate: center-90% dHashes are split into four 16-bit bands and
  bucketed by (band, value). Archives sharing a bucket are compared on dHash
  and aHash hamming distance. Buckets larger than bucket_max_size are skipped.

Only archives sharing at least one exact 16-bit band are ever compared, so a
pair within threshold whose differing bits hit all four bands is not found.

Connected components of size ≥2 become the groups; every accepted link is
also reported as a scored pair.
"""

import time
from collections import defaultdict
from typing import Callable, Iterable, Optional

from .graph_utils import UnionFind
from .models import (
    DuplicateScanConfig,
    DuplicateScanResult,
    DuplicateScanStats,
    NotDuplicatePair,
    Pair,
    PairReason,
    ScanFingerprint,
)
from .utils.hashing import hamming_distance

BAND_COUNT = 4
BAND_BITS = 16
BAND_MASK = 0xFFFF


class ScanCancelled(Exception):
    """The caller withdrew the scan before it finished."""


def pair_key(a: int, b: int) -> int:
    """Order-independent key for two indices."""
    lo, hi = (a, b) if a < b else (b, a)
    return (lo << 32) | hi


def band_keys(dhash: int) -> list[tuple[int, int]]:
    """(band index, 16-bit value) for each band, band 0 = low bits."""
    return [(band, (dhash >> (band * BAND_BITS)) & BAND_MASK) for band in range(BAND_COUNT)]


def materialize_groups(fingerprints: list[ScanFingerprint], uf: UnionFind) -> list[list[str]]:
    """Components of size ≥2, ids sorted, largest group first then by first id."""
    groups = [
        sorted(fingerprints[i].arcid for i in component)
        for component in uf.components()
        if len(component) > 1
    ]
    groups.sort(key=lambda g: (-len(g), g[0]))
    return groups


def finalize_pairs(pairs: list[Pair]) -> list[Pair]:
    """Sort by score, reason and ids, then keep the first pair per id pair."""
    result = []
    seen = set()
    for pair in sorted(pairs, key=Pair.sort_key):
        if pair.key in seen:
            continue
        seen.add(pair.key)
        result.append(pair)
    return result


def scan_duplicates(
    fingerprints: list[ScanFingerprint],
    not_duplicates: Iterable[NotDuplicatePair] = (),
    config: Optional[DuplicateScanConfig] = None,
    stopped_flag: Optional[Callable[[], bool]] = None,
) -> DuplicateScanResult:
    """
    Find exact and near-duplicate covers.

    Args:
        fingerprints: One row per archive (no repeated arcids)
        not_duplicates: Pairs the user marked as distinct; never linked
        config: Scan tunables (defaults when None)
        stopped_flag: Polled once per LSH bucket; when it returns True the
                      scan stops with ScanCancelled

    Returns:
        DuplicateScanResult with groups, pairs and stats

    Raises:
        ScanCancelled: stopped_flag fired
    """
    started = time.monotonic()
    if config is None:
        config = DuplicateScanConfig()

    if not fingerprints:
        return DuplicateScanResult(groups=[], pairs=[], stats=DuplicateScanStats())

    n = len(fingerprints)
    arcid_to_idx = {fp.arcid: i for i, fp in enumerate(fingerprints)}

    # Exclusions on unknown archives, and self-pairs, are ignored
    excluded = set()
    for pair in not_duplicates:
        a = arcid_to_idx.get(pair.arcid_a)
        b = arcid_to_idx.get(pair.arcid_b)
        if a is None or b is None or a == b:
            continue
        excluded.add(pair_key(a, b))

    uf = UnionFind(n)
    pairs = []

    exact_groups = 0
    if config.include_exact_checksum:
        by_checksum = defaultdict(list)
        for i, fp in enumerate(fingerprints):
            by_checksum[fp.checksum].append(i)

        for members in by_checksum.values():
            if len(members) < 2:
                continue
            exact_groups += 1
            anchor = members[0]
            for member in members[1:]:
                if pair_key(anchor, member) in excluded:
                    continue
                uf.union(anchor, member)
                pairs.append(Pair(
                    fingerprints[anchor].arcid,
                    fingerprints[member].arcid,
                    PairReason.EXACT_COVER,
                ))

    approximate_candidates = 0
    approximate_edges = 0
    skipped_buckets = 0
    excluded_count = 0

    if config.include_approximate:
        buckets = defaultdict(list)
        for i, fp in enumerate(fingerprints):
            for key in band_keys(fp.dhash_center90):
                buckets[key].append(i)

        seen_pairs = set()
        for members in buckets.values():
            if stopped_flag and stopped_flag():
                raise ScanCancelled()

            if len(members) < 2:
                continue
            if len(members) > config.bucket_max_size:
                skipped_buckets += 1
                continue

            for pos, ia in enumerate(members):
                a = fingerprints[ia]
                for ib in members[pos + 1:]:
                    key = pair_key(ia, ib)
                    if key in seen_pairs:
                        continue
                    seen_pairs.add(key)

                    if key in excluded:
                        excluded_count += 1
                        continue

                    approximate_candidates += 1
                    b = fingerprints[ib]

                    d_dist = hamming_distance(a.dhash_center90, b.dhash_center90)
                    if d_dist > config.dhash_threshold:
                        continue

                    a_dist = hamming_distance(a.ahash_center90, b.ahash_center90)
                    if a_dist > config.ahash_threshold:
                        continue

                    # Already reported as an exact cover
                    if config.include_exact_checksum and a.checksum == b.checksum:
                        continue

                    uf.union(ia, ib)
                    approximate_edges += 1
                    pairs.append(Pair(
                        a.arcid,
                        b.arcid,
                        PairReason.SIMILAR_COVER,
                        dhash_distance=d_dist,
                        ahash_distance=a_dist,
                    ))

    stats = DuplicateScanStats(
        items=n,
        exact_groups=exact_groups,
        approximate_candidates=approximate_candidates,
        approximate_edges=approximate_edges,
        skipped_buckets=skipped_buckets,
        excluded_not_duplicates=excluded_count,
        duration_seconds=time.monotonic() - started,
    )

    return DuplicateScanResult(
        groups=materialize_groups(fingerprints, uf),
        pairs=finalize_pairs(pairs),
        stats=stats,
    )
