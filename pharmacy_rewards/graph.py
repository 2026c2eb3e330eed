"""
LangGraph orchestration for the scan processing pipeline.
Defines the graph structure and node routing logic.
"""

from typing import Literal
from langgraph.graph import StateGraph, END

from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.schemas.scan import ScanStatus
from pharmacy_rewards.agents.extraction import extraction_agent
from pharmacy_rewards.agents.validation import validation_agent
from pharmacy_rewards.agents.points import points_agent
from pharmacy_rewards.agents.attribution import attribution_agent
from pharmacy_rewards.agents.ledger import ledger_agent, record_decision_agent


def route_after_extraction(state: ScanProcessingState) -> Literal["validation_agent", "end"]:
    """Route after extraction."""
    if state.extraction_error or not state.extracted_invoice:
        return "end"
    return "validation_agent"


def route_after_validation(state: ScanProcessingState) -> Literal["points_agent", "record_decision_agent", "end"]:
    """Processed scans earn points; rejected and pending_review ones are only recorded."""
    if state.validation_error or state.decision is None:
        return "end"
    if state.decision == ScanStatus.PROCESSED:
        return "points_agent"
    return "record_decision_agent"


def _bind(agent, services):
    """Node callable closing over the run's services."""
    async def node(state: ScanProcessingState) -> ScanProcessingState:
        return await agent(state, services)

    node.__name__ = agent.__name__
    return node


def build_scan_graph(services):
    """
    Build the LangGraph workflow for one invoice scan.

    Flow:
    1. Extraction Agent - Read the invoice photo
    2. Validation Agent - Ordered checks -> processed / pending_review / rejected
    3a. Points Agent -> Attribution Agent -> Ledger Agent (processed)
    3b. Record Decision Agent (rejected, pending_review)
    """

    graph = StateGraph(ScanProcessingState)

    graph.add_node("extraction_agent", _bind(extraction_agent, services))
    graph.add_node("validation_agent", _bind(validation_agent, services))
    graph.add_node("points_agent", _bind(points_agent, services))
    graph.add_node("attribution_agent", _bind(attribution_agent, services))
    graph.add_node("ledger_agent", _bind(ledger_agent, services))
    graph.add_node("record_decision_agent", _bind(record_decision_agent, services))

    graph.set_entry_point("extraction_agent")

    graph.add_conditional_edges(
        "extraction_agent",
        route_after_extraction,
        {
            "validation_agent": "validation_agent",
            "end": END,
        }
    )

    graph.add_conditional_edges(
        "validation_agent",
        route_after_validation,
        {
            "points_agent": "points_agent",
            "record_decision_agent": "record_decision_agent",
            "end": END,
        }
    )

    graph.add_edge("points_agent", "attribution_agent")
    graph.add_edge("attribution_agent", "ledger_agent")
    graph.add_edge("ledger_agent", END)
    graph.add_edge("record_decision_agent", END)

    return graph.compile()
