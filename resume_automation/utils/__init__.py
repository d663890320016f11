from .logger import setup_logging
from .hashing import sha256_hash, job_fingerprint
from .text import round_half_up, tokenize, significant_tokens

__all__ = [
    "setup_logging",
    "sha256_hash",
    "job_fingerprint",
    "round_half_up",
    "tokenize",
    "significant_tokens",
]
