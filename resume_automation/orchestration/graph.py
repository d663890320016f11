"""
LangGraph State Machine — the five-step resume builder run end to end.

    target → assessment → build → review → finalize
                 │                  │
                 └→ end_no_content  ├→ build (rejected sections, retries left)
                                    └→ escalate_review (retries exhausted)

All step nodes delegate to agent.process(state), which returns an updated
state dict that LangGraph merges automatically.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Union

from langgraph.graph import END, StateGraph

from resume_automation.agents import (
    AssessmentAgent,
    BaseAgent,
    BuildAgent,
    FinalizeAgent,
    ReviewAgent,
    TargetAgent,
)
from resume_automation.models.enums import BuilderStep, PipelineStatus
from resume_automation.models.schemas import TargetInputs
from resume_automation.models.state import BuilderSession
from resume_automation.orchestration.transitions import route_after_assessment, route_after_review

logger = logging.getLogger(__name__)


def default_agents() -> dict[BuilderStep, BaseAgent]:
    return {
        BuilderStep.TARGET: TargetAgent(),
        BuilderStep.ASSESSMENT: AssessmentAgent(),
        BuilderStep.BUILD: BuildAgent(),
        BuilderStep.REVIEW: ReviewAgent(),
        BuilderStep.FINALIZE: FinalizeAgent(),
    }


# ── Terminal nodes (set final status and stop) ───────────

def end_no_content(state: dict[str, Any]) -> dict[str, Any]:
    """Nothing to build: no sections, requirements or evidence."""
    state["status"] = PipelineStatus.NO_CONTENT
    logger.info("Pipeline terminated: NO_CONTENT")
    return state


def escalate_review(state: dict[str, Any]) -> dict[str, Any]:
    """Review kept rejecting sections — needs human review."""
    state["status"] = PipelineStatus.ESCALATED
    state["error_message"] = "Sections still rejected after max build retries"
    logger.warning("Escalated: build retries exhausted")
    return state


# ── Build the graph ──────────────────────────────────────

def build_graph(agents: Optional[dict[BuilderStep, BaseAgent]] = None):
    """
    Construct and compile the builder graph.
    Returns a compiled graph ready to invoke.
    """
    agents = agents or default_agents()
    graph = StateGraph(dict)

    # ── Add nodes ────────────────────────────────────────
    for step in BuilderStep:
        graph.add_node(step.value, agents[step].process)
    graph.add_node("end_no_content", end_no_content)
    graph.add_node("escalate_review", escalate_review)

    # ── Edges ────────────────────────────────────────────
    graph.set_entry_point(BuilderStep.TARGET.value)
    graph.add_edge(BuilderStep.TARGET.value, BuilderStep.ASSESSMENT.value)

    graph.add_conditional_edges(
        BuilderStep.ASSESSMENT.value,
        route_after_assessment,
        {
            "build": BuilderStep.BUILD.value,
            "end_no_content": "end_no_content",
        },
    )
    graph.add_edge(BuilderStep.BUILD.value, BuilderStep.REVIEW.value)
    graph.add_conditional_edges(
        BuilderStep.REVIEW.value,
        route_after_review,
        {
            "build": BuilderStep.BUILD.value,  # retry rejected sections
            "finalize": BuilderStep.FINALIZE.value,
            "escalate_review": "escalate_review",
        },
    )

    graph.add_edge(BuilderStep.FINALIZE.value, END)
    graph.add_edge("end_no_content", END)
    graph.add_edge("escalate_review", END)

    compiled = graph.compile()
    logger.info("Builder graph compiled successfully")
    return compiled


async def run_pipeline(
    inputs: Union[TargetInputs, dict[str, Any]],
    agents: Optional[dict[BuilderStep, BaseAgent]] = None,
) -> BuilderSession:
    """Run every step for *inputs* and return the resulting session."""
    if not isinstance(inputs, TargetInputs):
        inputs = TargetInputs.model_validate(inputs)
    session = BuilderSession(inputs=inputs)
    logger.info(f"Starting builder pipeline for session {session.session_id}")

    graph = build_graph(agents)
    final_state = await graph.ainvoke(session.model_dump())
    result = BuilderSession.model_validate(final_state)

    logger.info(f"Pipeline finished: status={result.status.value}")
    return result
