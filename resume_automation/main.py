"""
Resume Builder — Main Entry Point

Run the pipeline over a JSON inputs file (CLI):
    python -m resume_automation path/to/inputs.json

Run as an API server:
    python -m resume_automation --serve
    # or: uvicorn resume_automation.api:app --reload --port 8000

Or import and run programmatically:
    from resume_automation.main import run
    session = run("path/to/inputs.json")
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from resume_automation.config import get_settings
from resume_automation.models.schemas import TargetInputs
from resume_automation.models.state import BuilderSession
from resume_automation.orchestration.graph import run_pipeline
from resume_automation.utils.logger import setup_logging


def load_inputs(path: str) -> TargetInputs:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return TargetInputs.model_validate(data)


def run(inputs_path: str) -> BuilderSession:
    """Run the full builder pipeline and return the final session."""
    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)

    logger.info("=" * 60)
    logger.info("  RESUME BUILDER PIPELINE")
    logger.info(f"  Started: {datetime.now(timezone.utc).isoformat()}")
    logger.info("=" * 60)

    session = asyncio.run(run_pipeline(load_inputs(inputs_path)))
    _print_summary(session)
    return session


def _print_summary(session: BuilderSession) -> None:
    """Log a human-readable summary of the pipeline result."""
    logger = logging.getLogger(__name__)
    inputs = session.inputs
    matrix = session.matrix
    document = session.final_document

    logger.info("")
    logger.info("-" * 60)
    logger.info("  PIPELINE RESULT SUMMARY")
    logger.info("-" * 60)
    logger.info(f"  Session:        {session.session_id}")
    logger.info(f"  Role:           {inputs.job_title if inputs else 'N/A'}")
    logger.info(f"  Final Status:   {session.status.value}")
    if matrix is not None:
        coverage = f"{matrix.coverage_percent}%" if matrix.coverage_defined else "undefined"
        logger.info(f"  Coverage:       {coverage} ({len(matrix.rows)} requirements)")
    logger.info(f"  Build attempts: {session.build_attempts}")
    for name, draft in session.sections.items():
        verdict = session.validation.get(name)
        logger.info(
            f"    {name:<20} {draft.strategy.value:<13} "
            f"{verdict.recommendation.value if verdict else '-'}"
        )
    if document is not None:
        logger.info(f"  Avg quality:    {document.average_quality}")
        if document.unresolved_sections:
            logger.info(f"  Unresolved:     {', '.join(document.unresolved_sections)}")
    if session.error_message:
        logger.info(f"  Error:          {session.error_message}")
    logger.info("-" * 60)

    logger.info(f"\n  Audit Trail: {len(session.audit_trail)} entries")
    for entry in session.audit_trail:
        logger.info(f"    v{entry.state_version} | {entry.agent} | {entry.action} | {entry.details}")
    logger.info("")


def serve(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Start the FastAPI server."""
    import uvicorn

    setup_logging(get_settings().log_level)
    logger = logging.getLogger(__name__)
    logger.info(f"Starting API server on {host}:{port}")
    uvicorn.run("resume_automation.api:app", host=host, port=port, reload=get_settings().debug)


def main(argv: list[str]) -> None:
    if "--serve" in argv:
        serve()
    elif argv:
        run(argv[0])
    else:
        print("usage: python -m resume_automation <inputs.json> | --serve", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main(sys.argv[1:])
