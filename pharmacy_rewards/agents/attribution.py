"""
Attribution Agent
Credits sales reps for the product lines they cover at the invoice's pharmacy.

Every rep assigned to a line at that pharmacy receives the FULL points of each
line item on it (no splitting). A line nobody covers credits nobody.
"""

from typing import Dict, List, Optional

from pharmacy_rewards.schemas.reference import Pharmacy
from pharmacy_rewards.schemas.scan import ProductLineItem
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.utils.logging import setup_logging, log_agent_action


logger = setup_logging(__name__)


def resolve_rep_rewards(
    line_items: List[ProductLineItem],
    pharmacy: Optional[Pharmacy],
    default_line: str = "General",
) -> Dict[str, int]:
    """repId -> points credited, accumulated over all line items."""
    rewards: Dict[str, int] = {}
    if pharmacy is None:
        return rewards

    for item in line_items:
        if item.points <= 0:
            continue
        for rep_id in pharmacy.reps_for_line(item.line or default_line):
            rewards[rep_id] = rewards.get(rep_id, 0) + item.points

    return rewards


async def attribution_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Attribution Agent node.

    Updates state:
    - rep_rewards
    """
    pharmacy = next((p for p in state.pharmacies if p.id == state.pharmacy_id), None)

    state.rep_rewards = resolve_rep_rewards(
        state.line_items,
        pharmacy,
        services.config.DEFAULT_PRODUCT_LINE,
    )

    if state.rep_rewards:
        log_agent_action(
            logger,
            "AttributionAgent",
            "Reps credited",
            {"rep_rewards": state.rep_rewards},
            scan_id=state.scan_id,
        )
        state.add_reasoning(
            agent_name="AttributionAgent",
            message=f"Credited {len(state.rep_rewards)} sales rep(s): "
                    + ", ".join(f"{rep}={points}" for rep, points in state.rep_rewards.items()),
            action="reps_credited",
        )
    else:
        logger.debug(f"[AttributionAgent] No rep covers the lines on scan {state.scan_id}")

    return state
