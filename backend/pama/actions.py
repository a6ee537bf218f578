"""Actions handed to the host store's dispatch function."""
from typing import Any, Dict, Optional

from .models import Coding

APPLY_PAMA_RATING = "APPLY_PAMA_RATING"
ADD_REASON = "ADD_REASON"
REMOVE_REASON = "REMOVE_REASON"
UPDATE_STUDY = "UPDATE_STUDY"
REMOVE_STUDY = "REMOVE_STUDY"
TRIGGER_ORDER_SIGN = "TRIGGER_ORDER_SIGN"
LAUNCH_SMART_APP = "LAUNCH_SMART_APP"

Action = Dict[str, Any]


def apply_pama_rating(resource_id: Optional[str], rating: str) -> Action:
    return {"type": APPLY_PAMA_RATING, "resourceId": resource_id, "rating": rating}


def add_reason(coding: Coding) -> Action:
    return {"type": ADD_REASON, "coding": coding.model_dump(exclude_none=True)}


def remove_reason(coding: Coding) -> Action:
    return {"type": REMOVE_REASON, "coding": coding.model_dump(exclude_none=True)}


def update_study(coding: Coding) -> Action:
    return {"type": UPDATE_STUDY, "coding": coding.model_dump(exclude_none=True)}


def remove_study(coding: Coding) -> Action:
    return {"type": REMOVE_STUDY, "coding": coding.model_dump(exclude_none=True)}


def trigger_order_sign() -> Action:
    return {"type": TRIGGER_ORDER_SIGN}


def launch_smart_app(link: Dict[str, Any], source_window: Any = None, trigger_point: str = "pama/order-select") -> Action:
    return {
        "type": LAUNCH_SMART_APP,
        "triggerPoint": trigger_point,
        "link": link,
        "sourceWindow": source_window,
    }
