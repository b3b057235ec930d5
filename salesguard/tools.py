from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from .catalog.search import SearchCriteria, SearchEngine
from .mailer import EscalationMailer
from .session_store import Session
from .signals import Preferences
from .turn_parser import ToolCall
from .utils import mask_email, normalize_text

logger = logging.getLogger("salesguard.tools")

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[a-z]{2,}$", re.IGNORECASE)
UK_POSTCODE_RE = re.compile(r"^[a-z]{1,2}\d[a-z\d]?\s*\d[a-z]{2}$", re.IGNORECASE)

TOOL_SPECS: List[Dict[str, Any]] = [
    {
        "name": "search_products",
        "description": (
            "Search for in-stock products. Only call this when you know the furniture type "
            "and approximate seats; material is optional."
        ),
        "parameters": {
            "furnitureType": {"type": "string", "enum": ["dining", "lounge", "corner", "lounger"]},
            "material": {"type": "string", "description": "teak, aluminium, rattan or steel"},
            "seatCount": {"type": "integer", "description": "Minimum number of seats"},
            "productName": {"type": "string", "description": "Specific product name or SKU"},
        },
    },
    {
        "name": "get_material_info",
        "description": "Warranty, maintenance, durability, pros and cons for a material.",
        "parameters": {"material": {"type": "string", "enum": ["teak", "aluminium", "rattan", "steel"]}},
        "required": ["material"],
    },
    {
        "name": "request_human_handoff",
        "description": "Hand the conversation to the sales team when the customer needs more than you can do.",
        "parameters": {
            "reason": {"type": "string"},
            "customerEmail": {"type": "string"},
        },
        "required": ["reason"],
    },
    {
        "name": "capture_email",
        "description": "Store the customer's email address and optional postcode when they share them.",
        "parameters": {
            "email": {"type": "string"},
            "postcode": {"type": "string"},
        },
        "required": ["email"],
    },
    {
        "name": "init_checkout",
        "description": "Start checkout for a product the customer wants to buy. Use a SKU from the AVAILABLE list.",
        "parameters": {"sku": {"type": "string"}},
        "required": ["sku"],
    },
]

MATERIAL_INFO: Dict[str, Dict[str, str]] = {
    "teak": {
        "warranty": "5 years structural",
        "maintenance": "Oil annually to keep golden colour, or let weather naturally to silver-grey",
        "durability": "25+ years lifespan",
        "pros": "Beautiful natural wood, extremely durable, naturally weather-resistant",
        "cons": "Requires some maintenance, higher price point",
    },
    "aluminium": {
        "warranty": "10 years against corrosion",
        "maintenance": "Virtually none - just wipe with soapy water",
        "durability": "20+ years lifespan",
        "pros": "Zero maintenance, rust-proof, lightweight, modern look",
        "cons": "Can get hot in direct sun",
    },
    "rattan": {
        "warranty": "2 years structural and colour retention",
        "maintenance": "Cover during harsh winter, otherwise maintenance-free",
        "durability": "10-15 years with care",
        "pros": "UV-tested to 2000 hours, comfortable, affordable",
        "cons": "Synthetic material, should be covered in extreme weather",
    },
    "steel": {
        "warranty": "3 years against rust",
        "maintenance": "Check for scratches annually, touch up if needed",
        "durability": "15+ years",
        "pros": "Very strong, often powder-coated for protection",
        "cons": "Can rust if coating damaged",
    },
}
MATERIAL_ALIASES = {"aluminum": "aluminium", "wicker": "rattan", "wood": "teak"}
UNKNOWN_MATERIAL = {"warranty": "Please contact us for details", "maintenance": "Varies by product"}


def tools_prompt_block() -> str:
    lines = [
        "TOOLS: to call a tool, reply with only",
        '{"tool": "<name>", "arguments": {...}}',
        'or {"tool_calls": [{"tool": "<name>", "arguments": {...}}]}. Tool results arrive as the next message.',
    ]
    for tool in TOOL_SPECS:
        params = ", ".join(sorted(tool["parameters"]))
        lines.append(f"- {tool['name']}({params}): {tool['description']}")
    return "\n".join(lines)


def valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value.strip()))


def valid_postcode(value: str) -> bool:
    return bool(UK_POSTCODE_RE.match(value.strip()))


class ToolExecutor:
    """Run model-requested tools against the session and catalog."""

    def __init__(self, engine: SearchEngine, mailer: Optional[EscalationMailer], max_results: int = 5) -> None:
        self._engine = engine
        self._mailer = mailer
        self._max_results = max_results
        self._handlers: Dict[str, Callable[..., Any]] = {
            "search_products": self.search_products,
            "get_material_info": self.get_material_info,
            "request_human_handoff": self.request_human_handoff,
            "capture_email": self.capture_email,
            "init_checkout": self.init_checkout,
        }

    @property
    def names(self) -> List[str]:
        return list(self._handlers)

    async def execute(self, session: Session, call: ToolCall) -> Dict[str, Any]:
        """Purpose: Dispatch one tool call and return its JSON-serializable result.
        Inputs/Outputs: Inputs are the locked Session and a ToolCall; output is a dict.
        Side Effects / State: Tools may replace the whitelist, update customer context,
            capture contact details or send an escalation email.
        Dependencies: SearchEngine, EscalationMailer.
        Failure Modes: Unknown tool names return an error payload instead of raising.
        If Removed: The model cannot search, so nothing is ever whitelisted.
        Testing Notes: search_products must replace, not extend, session.whitelist.
        """
        # Unknown tools are reported back to the model, never raised.
        handler = self._handlers.get(call.name)
        if handler is None:
            logger.warning("tool unknown session=%s name=%s", session.session_id, call.name)
            return {"success": False, "error": f"Unknown tool {call.name}"}
        logger.info("tool call session=%s name=%s", session.session_id, call.name)
        return await handler(session, call.arguments)

    async def search_products(self, session: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        criteria = SearchCriteria.from_arguments(arguments)
        session.context.merge(
            Preferences(
                material=normalize_text(criteria.material) if criteria.material else None,
                furniture_type=normalize_text(criteria.furniture_type) if criteria.furniture_type else None,
                min_seats=criteria.min_seats,
            )
        )
        result = self._engine.search(criteria, max_results=self._max_results)
        session.replace_whitelist(result.skus)
        logger.info("whitelist replaced session=%s skus=%s", session.session_id, ",".join(session.whitelist) or "-")

        warning = None
        largest = result.max_seats
        if criteria.min_seats and result.items and (result.capacity_fallback or (largest or 0) < criteria.min_seats):
            warning = (
                f"Customer requested {criteria.min_seats}+ seats but largest available is "
                f"{largest or 0} seats. Be honest about this limitation."
            )
        if result.items:
            note = "Use ONLY these SKUs. Server renders details. " + (warning or "")
        else:
            note = (
                "No in-stock products found matching criteria. "
                "Suggest alternatives or ask about different requirements."
            )
        return {
            "success": bool(result.items),
            "available_skus": list(session.whitelist),
            "count": len(result.items),
            "products": [item.model_dump() for item in result.items],
            "searched_for": criteria.as_dict(),
            "warning": warning,
            "note": note.strip(),
        }

    async def get_material_info(self, session: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        material = normalize_text(str(arguments.get("material") or ""))
        material = MATERIAL_ALIASES.get(material, material)
        info = MATERIAL_INFO.get(material)
        if info is None:
            return dict(UNKNOWN_MATERIAL)
        return {"material": material, **info}

    async def request_human_handoff(self, session: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        reason = str(arguments.get("reason") or "customer request").strip()
        email = str(arguments.get("customerEmail") or arguments.get("customer_email") or "").strip()
        if email and valid_email(email):
            session.customer_email = email
        logger.info("handoff requested session=%s reason=%s", session.session_id, reason)

        sent = False
        if self._mailer is not None:
            sent = await self._mailer.send_escalation(
                session.session_id,
                reason,
                list(session.transcript),
                session.customer_email,
                session.customer_postcode,
            )
        session.escalated = True
        return {
            "success": True,
            "email_sent": sent,
            "message": "Handoff logged. Tell customer a team member will be in touch.",
        }

    async def capture_email(self, session: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        email = str(arguments.get("email") or "").strip()
        postcode = str(arguments.get("postcode") or "").strip()
        if not valid_email(email):
            return {"success": False, "error": "That email address does not look valid. Ask the customer to check it."}
        session.customer_email = email
        if postcode and valid_postcode(postcode):
            session.customer_postcode = postcode.upper()
        logger.info("email captured session=%s email=%s", session.session_id, mask_email(email))
        return {"success": True, "email": email, "postcode": session.customer_postcode}

    async def init_checkout(self, session: Session, arguments: Dict[str, Any]) -> Dict[str, Any]:
        sku = str(arguments.get("sku") or "").strip()
        if sku not in session.whitelist:
            logger.warning("checkout refused session=%s sku=%r reason=not-whitelisted", session.session_id, sku)
            return {"success": False, "error": "Only products from the AVAILABLE list can be checked out."}
        session.commercial.checkout_started = True
        contact = (("email", session.customer_email), ("postcode", session.customer_postcode))
        missing = [name for name, value in contact if not value]
        return {
            "success": True,
            "sku": sku,
            "needs": missing,
            "note": "Confirm the choice and ask for any missing details. The server shows product details.",
        }


def encode_tool_results(results: List[Dict[str, Any]]) -> str:
    return json.dumps({"tool_results": results}, ensure_ascii=False)
