"""
Hashing utilities for job identity and snapshot fingerprints.
"""

from __future__ import annotations

import hashlib


def sha256_hash(content: str | bytes) -> str:
    """Return the SHA-256 hex digest of the given content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def job_fingerprint(job_description: str) -> str:
    """Short, whitespace-insensitive id for a job description."""
    normalized = " ".join(job_description.lower().split())
    return sha256_hash(normalized)[:16]
