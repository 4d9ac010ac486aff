#!/usr/bin/env -S uv run --script
# /// script
# requires-python = '>=3.11'
# dependencies = [
#   "pillow",
#   "imagehash",
#   "numpy",
#   "tqdm"
# ]
# ///
"""
Cover Duplicate Scanner - Main Entry Point

Fingerprint archive cover thumbnails and find duplicate archives.

Usage:
    # Fingerprint thumbnails, then scan
    ./run_pipeline.py --from-stage 1 --thumbs ~/thumbs

    # Re-scan with a stricter threshold
    ./run_pipeline.py --stage 2 --dhash-threshold 4 --report scan.json

    # Only byte-identical covers
    ./run_pipeline.py --stage 2 --no-approximate

    # Record that two archives are not duplicates
    ./run_pipeline.py --mark-not-duplicate ARCID_A ARCID_B

    # Show pipeline status
    ./run_pipeline.py --status

    # Inspect one archive's fingerprints
    ./run_pipeline.py --show ARCID
"""

import argparse
import sys
from pathlib import Path

from coverscan.config import (
    AHASH_THRESHOLD,
    BUCKET_MAX_SIZE,
    DB_PATH,
    DEFAULT_PROFILE,
    DHASH_THRESHOLD,
    INDEX_WORKERS,
    THUMBS_DIR,
)
from coverscan.database import (
    add_not_duplicate_pair,
    clear_not_duplicate_pairs,
    get_connection,
    get_duplicate_groups,
    get_fingerprint_count,
    get_fingerprint_records,
    get_stage_status,
    init_db,
    load_not_duplicate_pairs,
    remove_not_duplicate_pair,
)
from coverscan.models import DuplicateScanConfig
from coverscan.utils.hashing import hash_to_hex


# Stage order for --from-stage
STAGE_ORDER = ["1", "2"]


def show_status(db_path: Path, profile_id: str):
    """Show current pipeline status."""
    print("=" * 70)
    print("PIPELINE STATUS")
    print("=" * 70)
    print()

    if not db_path.exists():
        print("Database not found. Run Stage 1 to initialize.")
        return

    init_db(db_path)

    with get_connection(db_path) as conn:
        # Stage completion status
        stages = [get_stage_status(conn, stage) for stage in STAGE_ORDER]
        stages = [row for row in stages if row]

        if stages:
            print("Completed stages:")
            for row in stages:
                print(f"  Stage {row['stage']}: {row['completed_at']}")
                print(f"           Count: {row['item_count']:,}")
                if row['notes']:
                    print(f"           Notes: {row['notes']}")
            print()

        print(f"Profile:               {profile_id}")

        fingerprinted = get_fingerprint_count(conn, profile_id)
        print(f"Fingerprinted:         {fingerprinted:,}")

        not_dups = conn.execute(
            "SELECT COUNT(*) FROM not_duplicates WHERE profile_id = ?",
            (profile_id,)
        ).fetchone()[0]
        print(f"Not-duplicate pairs:   {not_dups:,}")

        group_count = conn.execute(
            "SELECT COUNT(DISTINCT group_id) FROM duplicate_groups WHERE profile_id = ?",
            (profile_id,)
        ).fetchone()[0]
        print(f"Duplicate groups:      {group_count:,}")

        in_groups = conn.execute(
            "SELECT COUNT(*) FROM duplicate_groups WHERE profile_id = ?",
            (profile_id,)
        ).fetchone()[0]
        print(f"In duplicate groups:   {in_groups:,}")

        # Pair breakdown
        print()
        print("Pair breakdown:")
        cursor = conn.execute("""
            SELECT reason, COUNT(*) as count
            FROM duplicate_pairs
            WHERE profile_id = ?
            GROUP BY reason
            ORDER BY count DESC
        """, (profile_id,))
        for row in cursor:
            print(f"  {row['reason']}: {row['count']:,}")

        # Largest stored groups
        groups = get_duplicate_groups(conn, profile_id)
        if groups:
            print()
            print("Largest groups (first 10):")
            for group in groups[:10]:
                print(f"  {len(group):3} archives: {', '.join(group)}")

    print()


def show_fingerprints(db_path: Path, profile_id: str, arcid: str) -> None:
    """Print the stored fingerprints of one archive."""
    init_db(db_path)

    with get_connection(db_path) as conn:
        records = get_fingerprint_records(conn, profile_id, arcid)

    if not records:
        print(f"No fingerprints for {arcid}")
        sys.exit(1)

    first = records[0]
    print(f"Archive:       {arcid}")
    print(f"Checksum:      {first.thumb_checksum.hex()}")
    print(f"Aspect ratio:  {first.aspect_ratio:.4f}")
    print(f"Updated:       {first.updated_at}")
    for record in records:
        print(f"  {record.crop.name.lower():9} {record.kind.name.lower()}: {hash_to_hex(record.hash64)}")


def manage_not_duplicates(args: argparse.Namespace, db_path: Path) -> None:
    """Add, remove, list or clear not-duplicate decisions."""
    init_db(db_path)

    with get_connection(db_path) as conn:
        if args.mark_not_duplicate:
            a, b = args.mark_not_duplicate
            if a == b:
                print("Error: an archive cannot be marked as not a duplicate of itself")
                sys.exit(1)
            if add_not_duplicate_pair(conn, args.profile, a, b):
                print(f"Marked {a} / {b} as not duplicates")
            else:
                print(f"{a} / {b} were already marked as not duplicates")

        elif args.unmark_not_duplicate:
            a, b = args.unmark_not_duplicate
            if remove_not_duplicate_pair(conn, args.profile, a, b):
                print(f"Removed not-duplicate decision for {a} / {b}")
            else:
                print(f"No not-duplicate decision for {a} / {b}")

        elif args.clear_not_duplicates:
            removed = clear_not_duplicate_pairs(conn, args.profile)
            print(f"Removed {removed:,} not-duplicate decisions")

        elif args.list_not_duplicates:
            pairs = sorted(load_not_duplicate_pairs(conn, args.profile), key=lambda p: p.key)
            for pair in pairs:
                print(f"{pair.arcid_a}\t{pair.arcid_b}\t{pair.created_at}")
            print(f"\n{len(pairs):,} not-duplicate decisions")


def build_scan_config(args: argparse.Namespace) -> DuplicateScanConfig:
    """Scan tunables from the command line. Raises ValueError for unusable values."""
    if args.dhash_threshold < 0 or args.ahash_threshold < 0:
        raise ValueError("Hamming thresholds must be non-negative")
    if args.bucket_max_size < 2:
        raise ValueError("--bucket-max-size must be at least 2")

    return DuplicateScanConfig(
        include_exact_checksum=not args.no_exact,
        include_approximate=not args.no_approximate,
        dhash_threshold=args.dhash_threshold,
        ahash_threshold=args.ahash_threshold,
        bucket_max_size=args.bucket_max_size,
    )


def run_stage(stage: str, args: argparse.Namespace):
    """Run a specific stage."""
    db_path = Path(args.db)

    if stage == "1":
        from coverscan.stage1_index import run_stage1
        run_stage1(
            thumbs_dir=Path(args.thumbs).expanduser(),
            db_path=db_path,
            profile_id=args.profile,
            workers=args.workers,
            skip_existing=not args.no_skip_existing,
            resume=args.resume,
            clear_existing=args.clear,
        )

    elif stage == "2":
        from coverscan.stage2_scan import run_stage2
        result = run_stage2(
            db_path=db_path,
            profile_id=args.profile,
            config=build_scan_config(args),
            report_path=Path(args.report) if args.report else None,
        )
        if result is None:
            sys.exit(130)

    else:
        print(f"Unknown stage: {stage}")
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cover Duplicate Scanner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    # Action selection (mutually exclusive)
    action_group = parser.add_mutually_exclusive_group()
    action_group.add_argument(
        "--stage", type=str, choices=STAGE_ORDER,
        help="Run a single stage"
    )
    action_group.add_argument(
        "--from-stage", type=str, choices=STAGE_ORDER,
        help="Run from this stage to the end"
    )
    action_group.add_argument(
        "--status", action="store_true",
        help="Show pipeline status"
    )
    action_group.add_argument(
        "--show", metavar="ARCID",
        help="Print the stored fingerprints of one archive"
    )
    action_group.add_argument(
        "--mark-not-duplicate", nargs=2, metavar=("ARCID_A", "ARCID_B"),
        help="Record that two archives are not duplicates"
    )
    action_group.add_argument(
        "--unmark-not-duplicate", nargs=2, metavar=("ARCID_A", "ARCID_B"),
        help="Remove a not-duplicate decision"
    )
    action_group.add_argument(
        "--list-not-duplicates", action="store_true",
        help="List not-duplicate decisions"
    )
    action_group.add_argument(
        "--clear-not-duplicates", action="store_true",
        help="Remove all not-duplicate decisions"
    )

    # General options
    parser.add_argument(
        "--db", type=str, default=str(DB_PATH),
        help="Fingerprint database (default: from config)"
    )
    parser.add_argument(
        "--profile", type=str, default=DEFAULT_PROFILE,
        help="Library profile id (default: %(default)s)"
    )
    parser.add_argument(
        "--clear", action="store_true",
        help="Clear existing fingerprints before Stage 1"
    )

    # Stage 1 options
    parser.add_argument(
        "--thumbs", type=str, default=str(THUMBS_DIR),
        help="Thumbnail directory for Stage 1 (default: from config)"
    )
    parser.add_argument(
        "--workers", type=int, default=INDEX_WORKERS,
        help="Worker processes for Stage 1 (default: %(default)s)"
    )
    parser.add_argument(
        "--no-skip-existing", action="store_true",
        help="Re-fingerprint archives that already have fingerprints (Stage 1)"
    )
    parser.add_argument(
        "--resume", action="store_true",
        help="Continue from where the previous Stage 1 run stopped"
    )

    # Stage 2 options
    parser.add_argument(
        "--no-exact", action="store_true",
        help="Skip exact checksum matching (Stage 2)"
    )
    parser.add_argument(
        "--no-approximate", action="store_true",
        help="Skip perceptual hash matching (Stage 2)"
    )
    parser.add_argument(
        "--dhash-threshold", type=int, default=DHASH_THRESHOLD,
        help="Max dHash hamming distance (default: %(default)s)"
    )
    parser.add_argument(
        "--ahash-threshold", type=int, default=AHASH_THRESHOLD,
        help="Max aHash hamming distance (default: %(default)s)"
    )
    parser.add_argument(
        "--bucket-max-size", type=int, default=BUCKET_MAX_SIZE,
        help="Skip LSH buckets larger than this (default: %(default)s)"
    )
    parser.add_argument(
        "--report", type=str,
        help="Write a JSON report of the scan (Stage 2)"
    )

    return parser


def main(argv: list[str] = None):
    parser = build_parser()
    args = parser.parse_args(argv)
    db_path = Path(args.db).expanduser()
    args.db = str(db_path)

    # Show status
    if args.status:
        show_status(db_path, args.profile)
        return

    if args.show:
        show_fingerprints(db_path, args.profile, args.show)
        return

    if (args.mark_not_duplicate or args.unmark_not_duplicate
            or args.list_not_duplicates or args.clear_not_duplicates):
        manage_not_duplicates(args, db_path)
        return

    # Validate we have a stage to run
    if args.stage is None and args.from_stage is None:
        parser.print_help()
        print("\nError: Specify --stage, --from-stage, --status, --show or a not-duplicate action")
        sys.exit(1)

    try:
        build_scan_config(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # Initialize database
    init_db(db_path)

    # Run stage(s)
    if args.stage:
        run_stage(args.stage, args)
    else:
        # Run from specified stage to end
        start_idx = STAGE_ORDER.index(args.from_stage)
        for stage in STAGE_ORDER[start_idx:]:
            run_stage(stage, args)


if __name__ == "__main__":
    main()
