"""
Base agent class that every builder step agent inherits.

Design:
  - `process()` is the LangGraph node: dict in, dict out.
  - `run()` is what the state machine calls on a BuilderSession copy.
  - `_real_process()` is the single abstract method — override in each agent.
"""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from resume_automation.models.enums import AgentName, BuilderStep
from resume_automation.models.state import BuilderSession

logger = logging.getLogger(__name__)


class BaseAgent(ABC):
    """Abstract base for all step agents."""

    name: AgentName  # set in each subclass
    step: BuilderStep

    # ── Public entry points ──────────────────────────────

    async def process(self, state: dict[str, Any]) -> dict[str, Any]:
        """
        LangGraph calls this as the node function.
        Accepts and returns a dict so LangGraph can merge updates
        into the shared state automatically.
        """
        session = BuilderSession(**state)
        updated = await self.run(session)
        out_dict = updated.model_dump()
        _log_state_diff("STATE CHANGES", state, out_dict)
        return out_dict

    async def run(self, session: BuilderSession) -> BuilderSession:
        """Run the step on *session* (mutated in place and returned)."""
        t0 = time.perf_counter()
        separator = "═" * 70
        logger.info(separator)
        logger.info(f"▶ [{self.name.value}] STARTING (session {session.session_id})")

        try:
            updated = await self._real_process(session)
        except Exception as exc:
            elapsed = time.perf_counter() - t0
            session.error_message = f"[{self.name.value}] {exc}"
            session.add_audit(agent=self.name.value, action="error", details=str(exc))
            logger.error(f"✘ [{self.name.value}] FAILED after {elapsed:.3f}s: {exc}")
            raise

        updated.error_message = ""
        updated.add_audit(agent=self.name.value, action="completed")
        updated.touch()
        elapsed = time.perf_counter() - t0
        logger.info(f"✔ [{self.name.value}] COMPLETED in {elapsed:.3f}s")
        return updated

    # ── Subclass hook ────────────────────────────────────

    @abstractmethod
    async def _real_process(self, session: BuilderSession) -> BuilderSession:
        ...


# ── Debug helpers (module-level) ─────────────────────────

def _log_state_diff(label: str, before: dict[str, Any], after: dict[str, Any]) -> None:
    """Log which keys changed between input and output state."""
    changes: list[str] = []
    for key in sorted(set(before.keys()) | set(after.keys())):
        old = before.get(key)
        new = after.get(key)
        if old != new:
            changes.append(f"  │  {key}: {_truncate(old)} → {_truncate(new)}")
    if changes:
        logger.debug(f"  ┌─ {label}\n" + "\n".join(changes) + f"\n  └─ ({len(changes)} fields changed)")
    else:
        logger.debug(f"  ── {label}: no changes")


def _truncate(val: Any, max_len: int = 120) -> str:
    """Short repr for debug logging."""
    if val is None:
        return "<None>"
    if isinstance(val, list):
        return f"list({len(val)} items)"
    if isinstance(val, dict):
        s = json.dumps(val, default=str)
    else:
        s = repr(val) if isinstance(val, str) else str(val)
    if len(s) > max_len:
        return s[:max_len] + f"…({len(s)} chars)"
    return s
