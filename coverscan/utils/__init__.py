"""Hashing utilities for cover thumbnails."""
