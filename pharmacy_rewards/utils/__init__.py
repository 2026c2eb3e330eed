"""
Shared utilities and helpers.
"""

import json
import math
from typing import Any, Dict, Optional
from datetime import datetime, date

from dateutil.relativedelta import relativedelta


def serialize_for_json(obj: Any) -> Any:
    """Serialize objects that aren't JSON-serializable by default."""
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif hasattr(obj, 'model_dump'):  # Pydantic model
        return obj.model_dump(by_alias=True)
    elif hasattr(obj, '__dict__'):
        return obj.__dict__
    return str(obj)


def dict_to_json_string(data: Dict) -> str:
    """Convert dict to JSON string, handling non-serializable types."""
    return json.dumps(data, default=serialize_for_json, indent=2)


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def positive_number(value: Any) -> Optional[float]:
    """Return value as a float when it is a positive number, else None."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number) or number <= 0:
        return None
    return number


def add_months(moment: datetime, months: int) -> datetime:
    """Same wall-clock time `months` calendar months later (day clamped to month end)."""
    return moment + relativedelta(months=months)
