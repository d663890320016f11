"""
Session Repository — save / load BuilderSession records.

One record per session in the sessions table, keyed by session_id and
overwritten on every save (last-writer-wins at record level).  Version
history travels inside the record, so saving never creates history.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from resume_automation.config import get_settings
from resume_automation.exceptions import StoreFailure
from resume_automation.models.state import SESSION_SCHEMA_VERSION, BuilderSession
from resume_automation.persistence.record_store import RecordStore, get_record_store

logger = logging.getLogger(__name__)


class SessionRepository:
    """Persist BuilderSession snapshots through a RecordStore."""

    def __init__(self, store: Optional[RecordStore] = None, table: Optional[str] = None):
        self.store = store if store is not None else get_record_store()
        self.table = table or get_settings().sessions_table

    def save_session(self, session: BuilderSession) -> datetime:
        """Write the session and return the save timestamp it now carries."""
        saved_at = datetime.now(timezone.utc)
        record = session.model_dump(mode="json")
        record["last_saved_at"] = saved_at.isoformat()
        self.store.upsert(self.table, record)
        session.last_saved_at = saved_at
        logger.info(
            f"[SESSION] Saved {session.session_id} "
            f"(step={session.current_step.value}, versions={len(session.version_history)})"
        )
        return saved_at

    def load_session(self, session_id: str) -> Optional[BuilderSession]:
        """
        Load a session.  Returns None when the record is missing or was
        written by an older schema; the record itself is never removed.
        """
        records = self.store.get(self.table, {"session_id": session_id})
        if not records:
            logger.info(f"[SESSION] No stored session {session_id}")
            return None

        record = records[0]
        version = int(record.get("schema_version") or 0)
        if version < SESSION_SCHEMA_VERSION:
            logger.warning(
                f"[SESSION] Ignoring outdated session {session_id} "
                f"(v{version} < v{SESSION_SCHEMA_VERSION})"
            )
            return None

        try:
            return BuilderSession.model_validate(record)
        except ValidationError as exc:
            raise StoreFailure(
                f"stored session {session_id} is unreadable: {exc}", table=self.table
            ) from exc

    def touch_session(self, session_id: str, **patch: object) -> None:
        """Patch individual fields without rewriting the whole record."""
        self.store.update(self.table, {"session_id": session_id}, dict(patch))
