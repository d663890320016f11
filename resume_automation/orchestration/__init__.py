"""Orchestration — the interactive state machine and the end-to-end graph."""
