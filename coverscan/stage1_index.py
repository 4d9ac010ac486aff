"""
Stage 1: Index Thumbnails

Fingerprint cover thumbnails found in a local directory. Each file's stem is
the archive id (e.g. `thumbs/<arcid>.jpg`). For every thumbnail compute the
SHA256 plus dHash/aHash on the full, center-90% and center-75% crops.

Resumable: skip archives that already have fingerprints, and optionally
continue from the offset where the previous run stopped.
A thumbnail that fails to decode is counted and skipped; it never aborts the run.

Output: `fingerprints` table (six rows per archive)
"""

import multiprocessing as mp
import time
from dataclasses import dataclass
from pathlib import Path

from tqdm import tqdm

from .config import (
    BATCH_SIZE,
    DB_PATH,
    DEFAULT_PROFILE,
    EXCLUDE_FILENAMES,
    INDEX_WORKERS,
    THUMBNAIL_EXTENSIONS,
    THUMBS_DIR,
)
from .database import (
    get_connection,
    get_fingerprint_count,
    get_fingerprinted_arcids,
    get_last_start,
    init_db,
    record_stage_completion,
    set_last_start,
    upsert_fingerprints,
)
from .utils.hashing import FingerprintError, compute_fingerprint_file


@dataclass
class IndexSummary:
    """Counts from one indexing run."""

    total: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    start_offset: int = 0


def scan_thumbs_directory(thumbs_dir: Path = THUMBS_DIR) -> list[Path]:
    """List thumbnail files, sorted by name."""
    print(f"Scanning {thumbs_dir}...")
    files = []

    for file_path in thumbs_dir.iterdir():
        if not file_path.is_file():
            continue
        if file_path.name in EXCLUDE_FILENAMES:
            continue
        if file_path.name.startswith("."):
            continue
        if file_path.suffix.lower() not in THUMBNAIL_EXTENSIONS:
            continue
        files.append(file_path)

    files.sort(key=lambda p: p.name)
    print(f"Found {len(files):,} thumbnails")
    return files


def fingerprint_thumbnail(file_path: Path) -> tuple[str, object, str | None]:
    """
    Fingerprint one thumbnail (runs in a worker process).

    Returns (arcid, FingerprintResult or None, error message or None).
    """
    arcid = file_path.stem
    try:
        return arcid, compute_fingerprint_file(file_path), None
    except (FingerprintError, OSError) as e:
        return arcid, None, f"{type(e).__name__}: {e}"


def _iter_results(files: list[Path], workers: int):
    if workers <= 1:
        for file_path in files:
            yield fingerprint_thumbnail(file_path)
        return

    with mp.Pool(workers) as pool:
        # Ordered, so the saved offset only covers finished thumbnails
        yield from pool.imap(fingerprint_thumbnail, files, chunksize=16)


def run_stage1(
    thumbs_dir: Path = THUMBS_DIR,
    db_path: Path = DB_PATH,
    profile_id: str = DEFAULT_PROFILE,
    workers: int = INDEX_WORKERS,
    skip_existing: bool = True,
    resume: bool = False,
    clear_existing: bool = False,
) -> IndexSummary:
    """
    Run Stage 1: Index Thumbnails.

    Args:
        thumbs_dir: Directory holding <arcid>.<ext> thumbnails
        db_path: Fingerprint database
        profile_id: Library the fingerprints belong to
        workers: Worker processes (1 = hash inline)
        skip_existing: Skip archives that already have fingerprints
        resume: Start from the offset recorded by the previous run
        clear_existing: Delete this profile's fingerprints first
    """
    print("=" * 70)
    print("STAGE 1: INDEX THUMBNAILS")
    print("=" * 70)
    print()

    init_db(db_path)
    summary = IndexSummary()

    with get_connection(db_path) as conn:
        if clear_existing:
            print("Clearing existing fingerprints...")
            conn.execute("DELETE FROM fingerprints WHERE profile_id = ?", (profile_id,))
            conn.execute("DELETE FROM index_state WHERE profile_id = ?", (profile_id,))
            conn.commit()

        # (position in the full listing, path)
        files = list(enumerate(scan_thumbs_directory(Path(thumbs_dir))))
        summary.total = len(files)

        if resume:
            summary.start_offset = min(get_last_start(conn, profile_id), len(files))
            if summary.start_offset:
                print(f"Resuming from offset {summary.start_offset:,}")
            summary.skipped += summary.start_offset
            files = files[summary.start_offset:]

        if skip_existing:
            existing = get_fingerprinted_arcids(conn, profile_id)
            todo = [(pos, f) for pos, f in files if f.stem not in existing]
            summary.skipped += len(files) - len(todo)
            files = todo

        print(f"Found {len(files):,} thumbnails to fingerprint")
        print()

        if not files:
            print("No thumbnails to fingerprint.")
            set_last_start(conn, profile_id, 0)
            record_stage_completion(
                conn, "1",
                get_fingerprint_count(conn, profile_id),
                "no new fingerprints computed"
            )
            return summary

        batch = []
        errors = []
        done = 0

        for arcid, result, error in tqdm(
            _iter_results([f for _, f in files], workers),
            total=len(files),
            desc="Fingerprinting"
        ):
            done += 1
            if result is None:
                summary.failed += 1
                errors.append((arcid, error))
            else:
                batch.extend(result.to_records(profile_id, arcid, int(time.time())))
                summary.indexed += 1

            # Flush batch periodically
            if len(batch) >= BATCH_SIZE:
                upsert_fingerprints(conn, batch)
                conn.commit()
                batch = []
                set_last_start(conn, profile_id, files[done - 1][0] + 1)

        # Final batch
        if batch:
            upsert_fingerprints(conn, batch)
            conn.commit()

        # A full pass starts over next time
        set_last_start(conn, profile_id, 0)

        total = get_fingerprint_count(conn, profile_id)
        record_stage_completion(
            conn, "1",
            total,
            f"indexed={summary.indexed}, skipped={summary.skipped}, failed={summary.failed}"
        )

    # Print summary
    print()
    print("=" * 70)
    print("STAGE 1 COMPLETE")
    print("=" * 70)
    print()
    print(f"Thumbnails indexed:    {summary.indexed:,}")
    print(f"Skipped:               {summary.skipped:,}")
    print(f"Failed:                {summary.failed:,}")
    print(f"Total fingerprinted:   {total:,}")
    print()

    if errors:
        print("Failures (first 10):")
        for arcid, error in errors[:10]:
            print(f"  {arcid}: {error}")
        print()

    return summary


if __name__ == "__main__":
    run_stage1()
