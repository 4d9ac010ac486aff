"""
Stage 2: Scan for Duplicates

Find exact and near-duplicate covers among fingerprinted archives.

- Exact: identical thumbnail SHA256
- Similar: center-90% dHash and aHash within hamming thresholds, compared
  only inside LSH buckets (4 bands of 16 dHash bits)

Pairs the user marked as not-duplicates are never linked.
Ctrl-C cancels the scan; nothing is stored for a cancelled scan.

Output:
- `duplicate_groups` table (profile_id, group_id, arcid)
- `duplicate_pairs` table (scored pairs with reason and distances)
"""

import json
import signal
import threading
from collections import defaultdict
from pathlib import Path

from .config import DB_PATH, DEFAULT_PROFILE
from .database import (
    get_connection,
    init_db,
    load_not_duplicate_pairs,
    load_scan_fingerprints,
    record_stage_completion,
    save_scan_result,
)
from .duplicates import ScanCancelled, scan_duplicates
from .models import DuplicateScanConfig, DuplicateScanResult, PairReason


def write_report(result: DuplicateScanResult, report_path: Path) -> None:
    """Write groups, pairs and stats as JSON."""
    report_path.parent.mkdir(parents=True, exist_ok=True)
    with open(report_path, "w") as f:
        json.dump(result.to_dict(), f, indent=2)


def run_stage2(
    db_path: Path = DB_PATH,
    profile_id: str = DEFAULT_PROFILE,
    config: DuplicateScanConfig = None,
    report_path: Path = None,
    stop_event: threading.Event = None,
) -> DuplicateScanResult | None:
    """
    Run Stage 2: Scan for Duplicates.

    Args:
        db_path: Fingerprint database
        profile_id: Library to scan
        config: Scan tunables (defaults from config.py)
        report_path: Optional JSON report destination
        stop_event: Cancels the scan when set; Ctrl-C sets it if not given

    Returns:
        The scan result, or None if the scan was cancelled
    """
    if config is None:
        config = DuplicateScanConfig()

    print("=" * 70)
    print("STAGE 2: SCAN FOR DUPLICATES")
    print("=" * 70)
    print()
    print("Settings:")
    print(f"  Exact checksum:      {'on' if config.include_exact_checksum else 'off'}")
    print(f"  Approximate:         {'on' if config.include_approximate else 'off'}")
    print(f"  dHash threshold:     ≤{config.dhash_threshold}")
    print(f"  aHash threshold:     ≤{config.ahash_threshold}")
    print(f"  Bucket max size:     {config.bucket_max_size}")
    print()

    init_db(db_path)

    with get_connection(db_path) as conn:
        print("Loading fingerprints...")
        fingerprints = load_scan_fingerprints(conn, profile_id)
        not_duplicates = load_not_duplicate_pairs(conn, profile_id)
        print(f"Found {len(fingerprints):,} archives, {len(not_duplicates):,} not-duplicate decisions")
        print()

        install_handler = stop_event is None and threading.current_thread() is threading.main_thread()
        if stop_event is None:
            stop_event = threading.Event()

        previous_handler = None
        if install_handler:
            previous_handler = signal.signal(signal.SIGINT, lambda signum, frame: stop_event.set())

        print("Scanning...")
        try:
            result = scan_duplicates(
                fingerprints,
                not_duplicates,
                config,
                stopped_flag=stop_event.is_set,
            )
        except ScanCancelled:
            print()
            print("=" * 70)
            print("SCAN CANCELLED")
            print("=" * 70)
            print()
            print("No results were stored.")
            return None
        finally:
            if install_handler:
                signal.signal(signal.SIGINT, previous_handler)

        save_scan_result(conn, profile_id, result)

        stats = result.stats
        record_stage_completion(
            conn, "2",
            len(result.groups),
            f"pairs={len(result.pairs)}, exact_groups={stats.exact_groups}, "
            f"edges={stats.approximate_edges}, skipped_buckets={stats.skipped_buckets}"
        )

    if report_path:
        write_report(result, Path(report_path))

    # Group size distribution
    group_sizes = defaultdict(int)
    for group in result.groups:
        group_sizes[len(group)] += 1
    in_groups = sum(len(g) for g in result.groups)

    exact_pairs = sum(1 for p in result.pairs if p.reason is PairReason.EXACT_COVER)

    # Print summary
    print()
    print("=" * 70)
    print("STAGE 2 COMPLETE")
    print("=" * 70)
    print()
    print(f"Archives scanned:       {stats.items:,}")
    print(f"Duplicate groups:       {len(result.groups):,}")
    print(f"Archives in groups:     {in_groups:,}")
    print(f"Pairs:                  {len(result.pairs):,} "
          f"(exact={exact_pairs:,}, similar={len(result.pairs) - exact_pairs:,})")
    print()
    print(f"Exact checksum groups:  {stats.exact_groups:,}")
    print(f"Candidates compared:    {stats.approximate_candidates:,}")
    print(f"Similar edges:          {stats.approximate_edges:,}")
    print(f"Skipped buckets:        {stats.skipped_buckets:,}")
    print(f"Excluded pairs:         {stats.excluded_not_duplicates:,}")
    print(f"Time:                   {stats.duration_seconds:.3f}s")
    print()

    if group_sizes:
        print("Group size distribution:")
        for size in sorted(group_sizes.keys()):
            count = group_sizes[size]
            print(f"  {size:3} archives/group: {count:6,} groups ({size * count:8,} archives)")
        print()

    if report_path:
        print(f"Report written to {report_path}")
        print()

    return result


if __name__ == "__main__":
    run_stage2()
