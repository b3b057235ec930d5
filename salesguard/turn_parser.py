from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .session_store import CustomerContext
from .utils import load_json_payload

logger = logging.getLogger("salesguard.turns")

INTENT_PRODUCT_RECOMMENDATION = "product_recommendation"
INTENT_TOOL_CALL = "tool_call"

GREETING_REPLY = (
    "Hello! Welcome to MINT Outdoor. I'd love to help you find the perfect outdoor furniture. "
    "Are you looking for a dining set, lounge set, or something else?"
)
CLARIFY_TYPE_REPLY = (
    "I'd love to help you find the perfect outdoor furniture. "
    "Are you looking for dining, lounging, or both?"
)
TECHNICAL_ISSUE_REPLY = "I apologize, but I'm having a technical issue. Please try again."
DEFAULT_REPLY = "I'm here to help! What would you like to know about our outdoor furniture?"


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ModelTurn:
    """One structured model reply after parsing."""
    intent: str
    response_text: str = ""
    intro_copy: str = ""
    selected_skus: Tuple[Any, ...] = ()
    personalisation: str = ""
    closing_copy: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    is_fallback: bool = False

    @property
    def wants_tools(self) -> bool:
        return bool(self.tool_calls)


def _text(payload: Dict[str, Any], key: str) -> str:
    value = payload.get(key)
    return value.strip() if isinstance(value, str) else ""


def _tool_calls(payload: Dict[str, Any]) -> List[ToolCall]:
    raw_calls: List[Any] = []
    if isinstance(payload.get("tool_calls"), list):
        raw_calls.extend(payload["tool_calls"])
    elif payload.get("tool"):
        raw_calls.append(payload)

    calls: List[ToolCall] = []
    for raw in raw_calls:
        if not isinstance(raw, dict):
            continue
        name = raw.get("tool") or raw.get("name")
        if not isinstance(name, str) or not name.strip():
            continue
        arguments = raw.get("arguments")
        if isinstance(arguments, str):
            decoded = load_json_payload(arguments)
            arguments = decoded if isinstance(decoded, dict) else {}
        calls.append(ToolCall(name=name.strip(), arguments=arguments if isinstance(arguments, dict) else {}))
    return calls


def parse_model_output(text: str) -> Optional[ModelTurn]:
    """Purpose: Turn raw model text into a ModelTurn or a tool request.
    Inputs/Outputs: Input is raw model text; output is a ModelTurn or None when the
        text cannot be trusted as structured output.
    Side Effects / State: Logs the reason for every rejection.
    Dependencies: load_json_payload for the strict-then-lenient JSON chain.
    Failure Modes: Non-JSON text, JSON arrays and objects without an intent all
        return None; callers substitute fallback_turn().
    If Removed: Raw model text would be forwarded to customers unvalidated.
    Testing Notes: Cover fenced JSON, prose-wrapped JSON, arrays and missing intent.
    """
    # Tool requests take precedence over any intent in the same object.
    payload = load_json_payload(text)
    if not isinstance(payload, dict):
        logger.warning("model output rejected reason=%s", "not-json" if payload is None else "not-object")
        return None

    calls = _tool_calls(payload)
    if calls:
        return ModelTurn(intent=INTENT_TOOL_CALL, tool_calls=tuple(calls))

    intent = payload.get("intent")
    if not isinstance(intent, str) or not intent.strip():
        logger.warning("model output rejected reason=missing-intent")
        return None

    skus = payload.get("selected_skus")
    return ModelTurn(
        intent=intent.strip(),
        response_text=_text(payload, "response_text"),
        intro_copy=_text(payload, "intro_copy"),
        selected_skus=tuple(skus) if isinstance(skus, list) else (),
        personalisation=_text(payload, "personalisation"),
        closing_copy=_text(payload, "closing_copy"),
    )


def fallback_turn(context: CustomerContext, message_count: int) -> ModelTurn:
    """Deterministic reply asking for the first missing preference."""
    known = context.known()
    if message_count <= 1 and not known:
        return ModelTurn(intent="greeting", response_text=GREETING_REPLY, is_fallback=True)
    if not context.furniture_type:
        return ModelTurn(intent="clarification", response_text=CLARIFY_TYPE_REPLY, is_fallback=True)
    if not context.min_seats:
        text = f"Lovely, a {context.furniture_type} set it is. How many people would you like to seat?"
        return ModelTurn(intent="clarification", response_text=text, is_fallback=True)
    if not context.material:
        text = (
            f"Great, a {context.furniture_type} set for {context.min_seats}+ people. "
            "Do you have a material in mind - teak, aluminium or rattan?"
        )
        return ModelTurn(intent="clarification", response_text=text, is_fallback=True)
    text = (
        f"So far I have you down for a {context.material} {context.furniture_type} set for "
        f"{context.min_seats}+ people. Shall I show you what we have in stock?"
    )
    return ModelTurn(intent="clarification", response_text=text, is_fallback=True)
