"""Persistence — RecordStore backends and the SessionRepository."""

from resume_automation.persistence.record_store import (
    InMemoryRecordStore,
    MongoRecordStore,
    RecordStore,
    get_record_store,
    reset_record_store,
)
from resume_automation.persistence.session_repository import SessionRepository

__all__ = [
    "InMemoryRecordStore",
    "MongoRecordStore",
    "RecordStore",
    "SessionRepository",
    "get_record_store",
    "reset_record_store",
]
