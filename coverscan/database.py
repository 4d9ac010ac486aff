"""Database schema and utilities for the fingerprint store."""

import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from .config import DB_PATH
from .models import (
    DuplicateScanResult,
    FingerprintCrop,
    FingerprintKind,
    FingerprintRecord,
    NotDuplicatePair,
    ScanFingerprint,
)


SCHEMA = """
-- Perceptual hashes per archive (Stage 1), one row per (kind, crop)
CREATE TABLE IF NOT EXISTS fingerprints (
    profile_id TEXT NOT NULL,
    arcid TEXT NOT NULL,
    kind INTEGER NOT NULL,         -- 0 = dHash, 1 = aHash
    crop INTEGER NOT NULL,         -- 0 = full, 1 = center90, 2 = center75
    hash64 INTEGER NOT NULL,       -- signed bit pattern of the unsigned hash
    aspect_ratio REAL NOT NULL,
    thumb_checksum BLOB NOT NULL,  -- SHA256 of the thumbnail bytes
    updated_at INTEGER NOT NULL,
    PRIMARY KEY (profile_id, arcid, kind, crop)
);

-- User decisions: pairs that are not duplicates (arcid_a < arcid_b)
CREATE TABLE IF NOT EXISTS not_duplicates (
    profile_id TEXT NOT NULL,
    arcid_a TEXT NOT NULL,
    arcid_b TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    PRIMARY KEY (profile_id, arcid_a, arcid_b)
);

-- Resume point for indexing
CREATE TABLE IF NOT EXISTS index_state (
    profile_id TEXT PRIMARY KEY,
    last_start INTEGER NOT NULL,
    last_indexed_at INTEGER NOT NULL
);

-- Latest scan output (Stage 2)
CREATE TABLE IF NOT EXISTS duplicate_groups (
    profile_id TEXT NOT NULL,
    group_id INTEGER NOT NULL,
    arcid TEXT NOT NULL,
    PRIMARY KEY (profile_id, arcid)
);

CREATE TABLE IF NOT EXISTS duplicate_pairs (
    profile_id TEXT NOT NULL,
    arcid_a TEXT NOT NULL,
    arcid_b TEXT NOT NULL,
    reason TEXT NOT NULL,          -- 'exact_cover' or 'similar_cover'
    score INTEGER NOT NULL,
    dhash_dist INTEGER,
    ahash_dist INTEGER,
    PRIMARY KEY (profile_id, arcid_a, arcid_b)
);

-- Pipeline state tracking
CREATE TABLE IF NOT EXISTS pipeline_state (
    stage TEXT PRIMARY KEY,
    completed_at DATETIME,
    item_count INTEGER,
    notes TEXT
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_fingerprints_profile_kind_crop_hash
    ON fingerprints(profile_id, kind, crop, hash64);
CREATE INDEX IF NOT EXISTS idx_fingerprints_profile_checksum
    ON fingerprints(profile_id, thumb_checksum);
CREATE INDEX IF NOT EXISTS idx_duplicate_groups_group_id
    ON duplicate_groups(profile_id, group_id);
"""


def to_signed64(value: int) -> int:
    """Unsigned 64-bit hash -> sqlite INTEGER bit pattern."""
    return value - (1 << 64) if value >= (1 << 63) else value


def from_signed64(value: int) -> int:
    return value + (1 << 64) if value < 0 else value


def init_db(db_path: Path = DB_PATH) -> None:
    """Initialize the database with the schema."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SCHEMA)
    conn.commit()
    conn.close()


@contextmanager
def get_connection(db_path: Path = DB_PATH) -> Iterator[sqlite3.Connection]:
    """Get a database connection with row factory enabled."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


def record_stage_completion(
    conn: sqlite3.Connection,
    stage: str,
    item_count: int,
    notes: str = None
) -> None:
    """Record that a pipeline stage has completed."""
    conn.execute("""
        INSERT OR REPLACE INTO pipeline_state (stage, completed_at, item_count, notes)
        VALUES (?, ?, ?, ?)
    """, (stage, datetime.now().isoformat(), item_count, notes))
    conn.commit()


def get_stage_status(conn: sqlite3.Connection, stage: str) -> dict | None:
    """Get the status of a pipeline stage."""
    cursor = conn.execute(
        "SELECT * FROM pipeline_state WHERE stage = ?",
        (stage,)
    )
    row = cursor.fetchone()
    return dict(row) if row else None


# =============================================================================
# Fingerprints
# =============================================================================

def upsert_fingerprints(conn: sqlite3.Connection, records: Iterable[FingerprintRecord]) -> None:
    """Insert or wholesale-replace fingerprint rows. Does not commit."""
    conn.executemany(
        """
        INSERT OR REPLACE INTO fingerprints
        (profile_id, arcid, kind, crop, hash64, aspect_ratio, thumb_checksum, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                r.profile_id,
                r.arcid,
                int(r.kind),
                int(r.crop),
                to_signed64(r.hash64),
                r.aspect_ratio,
                r.thumb_checksum,
                r.updated_at,
            )
            for r in records
        ],
    )


def get_fingerprinted_arcids(conn: sqlite3.Connection, profile_id: str) -> set[str]:
    """Archives that have at least one fingerprint row."""
    cursor = conn.execute(
        "SELECT DISTINCT arcid FROM fingerprints WHERE profile_id = ?",
        (profile_id,)
    )
    return {row[0] for row in cursor.fetchall()}


def get_fingerprint_count(conn: sqlite3.Connection, profile_id: str) -> int:
    """Number of distinct archives with fingerprints."""
    cursor = conn.execute(
        "SELECT COUNT(DISTINCT arcid) FROM fingerprints WHERE profile_id = ?",
        (profile_id,)
    )
    return cursor.fetchone()[0]


def get_fingerprint_records(conn: sqlite3.Connection, profile_id: str, arcid: str) -> list[FingerprintRecord]:
    """All stored records for one archive, ordered by crop then kind."""
    cursor = conn.execute("""
        SELECT * FROM fingerprints
        WHERE profile_id = ? AND arcid = ?
        ORDER BY crop, kind
    """, (profile_id, arcid))
    return [
        FingerprintRecord(
            profile_id=row["profile_id"],
            arcid=row["arcid"],
            kind=FingerprintKind(row["kind"]),
            crop=FingerprintCrop(row["crop"]),
            hash64=from_signed64(row["hash64"]),
            aspect_ratio=row["aspect_ratio"],
            thumb_checksum=bytes(row["thumb_checksum"]),
            updated_at=row["updated_at"],
        )
        for row in cursor.fetchall()
    ]


def load_scan_fingerprints(conn: sqlite3.Connection, profile_id: str) -> list[ScanFingerprint]:
    """
    Get the flattened scan view: one row per archive, sorted by arcid.

    Archives missing the checksum or either center-90% hash are left out.
    """
    cursor = conn.execute("""
        SELECT arcid, kind, hash64, thumb_checksum
        FROM fingerprints
        WHERE profile_id = ? AND crop = ?
    """, (profile_id, int(FingerprintCrop.CENTER90)))

    partial = {}  # arcid -> [checksum, dhash, ahash]
    for row in cursor:
        entry = partial.setdefault(row["arcid"], [None, None, None])
        if entry[0] is None and row["thumb_checksum"]:
            entry[0] = bytes(row["thumb_checksum"])
        if row["kind"] == FingerprintKind.DHASH:
            entry[1] = from_signed64(row["hash64"])
        elif row["kind"] == FingerprintKind.AHASH:
            entry[2] = from_signed64(row["hash64"])

    result = [
        ScanFingerprint(arcid=arcid, checksum=checksum, dhash_center90=dh, ahash_center90=ah)
        for arcid, (checksum, dh, ah) in partial.items()
        if checksum is not None and dh is not None and ah is not None
    ]
    result.sort(key=lambda fp: fp.arcid)
    return result


# =============================================================================
# Not-duplicate decisions
# =============================================================================

def load_not_duplicate_pairs(conn: sqlite3.Connection, profile_id: str) -> set[NotDuplicatePair]:
    cursor = conn.execute("""
        SELECT arcid_a, arcid_b, created_at
        FROM not_duplicates
        WHERE profile_id = ?
    """, (profile_id,))
    return {
        NotDuplicatePair(row["arcid_a"], row["arcid_b"], created_at=row["created_at"])
        for row in cursor.fetchall()
    }


def add_not_duplicate_pair(conn: sqlite3.Connection, profile_id: str, arcid_a: str, arcid_b: str) -> bool:
    """
    Record that two archives are not duplicates.

    Returns True if a new decision was stored, False if it already existed.
    """
    pair = NotDuplicatePair(arcid_a, arcid_b, created_at=int(time.time()))
    cursor = conn.execute("""
        INSERT OR IGNORE INTO not_duplicates (profile_id, arcid_a, arcid_b, created_at)
        VALUES (?, ?, ?, ?)
    """, (profile_id, pair.arcid_a, pair.arcid_b, pair.created_at))
    conn.commit()
    return cursor.rowcount > 0


def remove_not_duplicate_pair(conn: sqlite3.Connection, profile_id: str, arcid_a: str, arcid_b: str) -> bool:
    """Forget a decision. Returns True if one was removed."""
    pair = NotDuplicatePair(arcid_a, arcid_b)
    cursor = conn.execute("""
        DELETE FROM not_duplicates
        WHERE profile_id = ? AND arcid_a = ? AND arcid_b = ?
    """, (profile_id, pair.arcid_a, pair.arcid_b))
    conn.commit()
    return cursor.rowcount > 0


def clear_not_duplicate_pairs(conn: sqlite3.Connection, profile_id: str) -> int:
    """Forget all decisions for a profile. Returns how many were removed."""
    cursor = conn.execute(
        "DELETE FROM not_duplicates WHERE profile_id = ?",
        (profile_id,)
    )
    conn.commit()
    return cursor.rowcount


# =============================================================================
# Index state
# =============================================================================

def get_last_start(conn: sqlite3.Connection, profile_id: str) -> int:
    cursor = conn.execute(
        "SELECT last_start FROM index_state WHERE profile_id = ?",
        (profile_id,)
    )
    row = cursor.fetchone()
    return row[0] if row else 0


def set_last_start(conn: sqlite3.Connection, profile_id: str, last_start: int) -> None:
    conn.execute("""
        INSERT OR REPLACE INTO index_state (profile_id, last_start, last_indexed_at)
        VALUES (?, ?, ?)
    """, (profile_id, last_start, int(time.time())))
    conn.commit()


# =============================================================================
# Scan output
# =============================================================================

def save_scan_result(conn: sqlite3.Connection, profile_id: str, result: DuplicateScanResult) -> None:
    """Replace the stored groups and pairs for a profile with a new scan."""
    conn.execute("DELETE FROM duplicate_groups WHERE profile_id = ?", (profile_id,))
    conn.execute("DELETE FROM duplicate_pairs WHERE profile_id = ?", (profile_id,))

    conn.executemany(
        """
        INSERT INTO duplicate_groups (profile_id, group_id, arcid)
        VALUES (?, ?, ?)
        """,
        [
            (profile_id, group_id, arcid)
            for group_id, group in enumerate(result.groups)
            for arcid in group
        ],
    )

    conn.executemany(
        """
        INSERT INTO duplicate_pairs
        (profile_id, arcid_a, arcid_b, reason, score, dhash_dist, ahash_dist)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        [
            (
                profile_id,
                p.arcid_a,
                p.arcid_b,
                p.reason.value,
                p.score,
                p.dhash_distance,
                p.ahash_distance,
            )
            for p in result.pairs
        ],
    )
    conn.commit()


def get_duplicate_groups(conn: sqlite3.Connection, profile_id: str) -> list[list[str]]:
    """Stored groups in their saved order."""
    cursor = conn.execute("""
        SELECT group_id, arcid FROM duplicate_groups
        WHERE profile_id = ?
        ORDER BY group_id, arcid
    """, (profile_id,))
    groups = {}
    for row in cursor:
        groups.setdefault(row["group_id"], []).append(row["arcid"])
    return list(groups.values())
