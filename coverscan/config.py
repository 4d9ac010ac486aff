"""Pipeline configuration - paths, thresholds, and constants."""

import os
from pathlib import Path

# Root directory for the database and reports
OUTPUT_ROOT = Path(os.environ.get("COVERSCAN_HOME", Path.home() / ".coverscan"))

# Database path
DB_PATH = OUTPUT_ROOT / "fingerprints.db"

# Directory of downloaded thumbnails, one file per archive named <arcid>.<ext>
THUMBS_DIR = OUTPUT_ROOT / "thumbs"

# Profile (library/server) that fingerprints and exclusions belong to
DEFAULT_PROFILE = "default"

# Hamming distance thresholds on the center-90% crop
#   dHash ≤6 AND aHash ≤6: similar cover
DHASH_THRESHOLD = 6
AHASH_THRESHOLD = 6

# LSH buckets with more members than this are skipped (quadratic guard)
BUCKET_MAX_SIZE = 64

# Thumbnail file extensions to index
THUMBNAIL_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".bmp", ".webp", ".avif", ".jxl"}

# Files to always skip
EXCLUDE_FILENAMES = {".DS_Store", "Thumbs.db", "desktop.ini"}

# Worker processes for fingerprinting
INDEX_WORKERS = max(1, (os.cpu_count() or 2) - 2)

# Batch size for database commits
BATCH_SIZE = 1000
