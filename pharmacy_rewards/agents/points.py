"""
Points Agent
Turns the validated invoice's product lines into points.

PRECEDENCE PER LINE:
- unit price > 0 and commission > 0  -> round(unit price * quantity * commission / 100)
- commission == 0                    -> quantity * legacy points per unit
- otherwise (commission, no price)   -> 0, never the legacy rate
- inactive product                   -> 0, whatever the above says

Rounding happens once per line; the invoice total is the sum of line integers.
"""

from typing import List, Optional, Tuple

from pharmacy_rewards.schemas.invoice import ExtractedProduct
from pharmacy_rewards.schemas.reference import Product
from pharmacy_rewards.schemas.scan import ProductLineItem
from pharmacy_rewards.state import ScanProcessingState
from pharmacy_rewards.utils import positive_number, round_half_up
from pharmacy_rewards.utils.logging import setup_logging, log_agent_action


logger = setup_logging(__name__)


def calculate_line_points(product: Product, quantity: float, unit_price: float) -> int:
    """Points for one invoice line of a known product."""
    if not product.is_active:
        return 0

    if unit_price > 0 and product.commission > 0:
        return round_half_up(unit_price * quantity * product.commission / 100)

    if product.commission == 0:
        return round_half_up(quantity * product.points)

    return 0


def build_line_item(item: ExtractedProduct, product: Product, default_line: str = "General") -> ProductLineItem:
    quantity = positive_number(item.quantity) or 1
    unit_price = positive_number(item.unit_price) or 0

    return ProductLineItem(
        product=product.name,
        quantity=quantity,
        unit_price=unit_price,
        commission_pct=product.commission,
        points=calculate_line_points(product, quantity, unit_price),
        line=product.line or default_line,
    )


def compute_points(
    items: List[ExtractedProduct],
    products: List[Product],
    default_line: str = "General",
) -> Tuple[List[ProductLineItem], int]:
    """
    Price every extracted line that names a known product.

    Lines whose name matches no product are dropped silently.
    """
    catalog = {}
    for product in products:
        catalog.setdefault(product.name, product)

    line_items: List[ProductLineItem] = []
    total_points = 0

    for item in items:
        product: Optional[Product] = catalog.get(item.name) if item.name else None
        if product is None:
            logger.debug(f"Dropping unmatched product line: {item.name!r}")
            continue

        line_item = build_line_item(item, product, default_line)
        line_items.append(line_item)
        total_points += line_item.points

    return line_items, total_points


async def points_agent(state: ScanProcessingState, services) -> ScanProcessingState:
    """
    Points Agent node.

    Updates state:
    - line_items
    - total_points
    """
    logger.info(f"[PointsAgent] Calculating points for scan {state.scan_id}")

    state.line_items, state.total_points = compute_points(
        state.extracted_invoice.products,
        state.products,
        services.config.DEFAULT_PRODUCT_LINE,
    )

    log_agent_action(
        logger,
        "PointsAgent",
        "Points calculated",
        {"total_points": state.total_points, "lines": len(state.line_items)},
        scan_id=state.scan_id,
    )

    state.add_reasoning(
        agent_name="PointsAgent",
        message=f"{len(state.line_items)} product line(s) matched for {state.total_points} point(s).",
        action="points_calculated",
    )

    return state
