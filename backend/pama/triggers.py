"""
CDS Hooks trigger handler for PAMA imaging orders.

The host calls the handler registered for a trigger point with batches of
system actions and with scratchpad messages. Ratings found in those events are
applied to the draft order through the host's dispatch function, and
`generate_context` describes the draft order the host should evaluate.
"""
from __future__ import annotations

import os
import logging
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Protocol, Union

from pydantic import ValidationError

from .actions import Action, TRIGGER_ORDER_SIGN, apply_pama_rating
from .models import InboundMessage, OrderEntryState, SystemAction
from .rating import extract_ratings

logger = logging.getLogger(__name__)

ORDER_SELECT = "pama/order-select"
ORDER_SIGN = "pama/order-sign"

SYSTEM_ACTION_UPDATE = "update"
SCRATCHPAD_UPDATE = "scratchpad.update"

DRAFT_REQUEST_ID = os.getenv("PAMA_DRAFT_REQUEST_ID", "example-request-id")

Dispatch = Callable[[Action], Any]


class TriggerRegistrar(Protocol):
    def register_trigger_handler(self, trigger_point: str, handler: "PamaTriggerHandler") -> None:
        ...


def _as_system_action(raw: Union[SystemAction, Mapping[str, Any]]) -> Optional[SystemAction]:
    if isinstance(raw, SystemAction):
        return raw
    try:
        return SystemAction.model_validate(raw)
    except ValidationError:
        return None


def _as_message(raw: Union[InboundMessage, Mapping[str, Any], None]) -> Optional[InboundMessage]:
    if raw is None or isinstance(raw, InboundMessage):
        return raw
    try:
        return InboundMessage.model_validate(raw)
    except ValidationError:
        return None


def _as_state(raw: Union[OrderEntryState, Mapping[str, Any]]) -> OrderEntryState:
    if isinstance(raw, OrderEntryState):
        return raw
    return OrderEntryState.model_validate(raw or {})


@dataclass(frozen=True)
class PamaTriggerHandler:
    """
    need_explicit_trigger is False to react to every qualifying event, or the
    name of the host action (e.g. TRIGGER_ORDER_SIGN) that must fire first.
    """

    need_explicit_trigger: Union[bool, str] = False
    draft_request_id: str = DRAFT_REQUEST_ID

    def _dispatch_first(self, resources: Iterable[Mapping[str, Any]], dispatch: Dispatch) -> Optional[Action]:
        # Only one rating may apply to the draft order; later candidates are dropped.
        for resource in resources:
            for extracted in extract_ratings(resource):
                action = apply_pama_rating(extracted.resource_id, extracted.rating)
                logger.debug(f"dispatching rating={extracted.rating} resource={extracted.resource_id}")
                dispatch(action)
                return action
        return None

    def on_system_actions(
        self,
        system_actions: Optional[Iterable[Union[SystemAction, Mapping[str, Any]]]],
        state: Any,
        dispatch: Dispatch,
    ) -> Optional[Action]:
        updates = []
        for raw in system_actions or []:
            action = _as_system_action(raw)
            if action is not None and action.type == SYSTEM_ACTION_UPDATE:
                updates.append(action.resource)
        return self._dispatch_first(updates, dispatch)

    def on_message(
        self,
        data: Union[InboundMessage, Mapping[str, Any], None],
        dispatch: Dispatch,
    ) -> Optional[Action]:
        message = _as_message(data)
        if message is None or message.message_type != SCRATCHPAD_UPDATE:
            return None
        return self._dispatch_first([message.payload or {}], dispatch)

    def generate_context(self, state: Union[OrderEntryState, Mapping[str, Any]]) -> Dict[str, Any]:
        state = _as_state(state)
        draft = state.service_request
        study = draft.study_coding

        code: Dict[str, Any] = {"coding": [study.model_dump(exclude_none=True)] if study else []}
        if study is not None:
            code["text"] = study.display

        request: Dict[str, Any] = {
            "resourceType": "ServiceRequest",
            "id": self.draft_request_id,
            "status": "draft",
            "intent": "plan",
            "code": code,
        }
        if state.patient_id:
            request["subject"] = {"reference": f"Patient/{state.patient_id}"}
        request["reasonCode"] = [
            {"coding": [r.model_dump(exclude_none=True)], "text": r.display}
            for r in draft.reason_codings
        ]

        return {
            "selections": [f"ServiceRequest/{self.draft_request_id}"],
            "draftOrders": {
                "resourceType": "Bundle",
                "entry": [{"resource": request}],
            },
        }


def build_trigger_handlers(base: Optional[PamaTriggerHandler] = None) -> Mapping[str, PamaTriggerHandler]:
    """Both PAMA trigger points share one handler; order-sign waits for an explicit sign."""
    base = base or PamaTriggerHandler()
    return MappingProxyType({
        ORDER_SELECT: base,
        ORDER_SIGN: replace(base, need_explicit_trigger=TRIGGER_ORDER_SIGN),
    })


def register_trigger_handlers(registrar: TriggerRegistrar, handlers: Mapping[str, PamaTriggerHandler]) -> None:
    for name, handler in handlers.items():
        registrar.register_trigger_handler(name, handler)
