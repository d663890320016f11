"""Resume Builder — evidence-grounded resume content generation and review."""

__version__ = "0.1.0"
