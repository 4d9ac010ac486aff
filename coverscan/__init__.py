"""Cover fingerprinting and duplicate scanning for library archives.

Stages:
  1. Index - fingerprint local thumbnails (checksum + dHash/aHash per crop)
  2. Scan - find exact and near-duplicate covers, grouped into components
"""
