"""Turn orchestration for the furniture sales assistant.

Role:
    Runs one customer message through an explicit router and a fixed step list.
    The model may talk and request tools, but every product fact that reaches the
    customer comes from the catalog through the whitelist and the card renderer.

Turn data contract (fields passed across steps):
    - signals, intent, route: keyword classification and the routing decision.
    - model_turn: the parsed model reply, or a deterministic fallback.
    - approved, rejected: model-selected SKUs split by the session whitelist.
    - cards, offer: rendered product cards and the governed offer, if any.
    - response_text: the final customer-facing reply.

Routes:
    FAST_PATH_CLOSING:
        Purchase intent classified READY and a shown product is still whitelisted.
        The model is bypassed entirely.
    TOOL_AUGMENTED:
        Normal sales dialogue; tools are advertised and may run for a bounded number
        of rounds.
    PLAIN_MODEL:
        Greetings, thanks and farewells. Tools are not advertised and a tool request
        degrades to the fallback reply.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Protocol

from .cards import UNAVAILABLE_REPLY, CardRenderer, PresentationCard, join_cards
from .catalog.index import CatalogIndex
from .catalog.price_cache import PriceCache
from .catalog.stock import StockResolver
from .governance import (
    OFFER_BUNDLE,
    CommercialGovernor,
    Offer,
    PurchaseIntent,
    observe,
    record_offer,
    record_products_shown,
)
from .prompt_loader import build_system_prompt
from .session_store import Session
from .signals import SignalRules, TurnSignals, read_signals
from .tools import ToolExecutor, encode_tool_results, tools_prompt_block
from .turn_parser import (
    DEFAULT_REPLY,
    INTENT_PRODUCT_RECOMMENDATION,
    TECHNICAL_ISSUE_REPLY,
    ModelTurn,
    fallback_turn,
    parse_model_output,
)
from .turn_runtime import TurnPipeline, TurnStep
from .whitelist import WhitelistValidator

logger = logging.getLogger("salesguard.agent")


class TurnModel(Protocol):
    async def generate_turn(self, system_instruction: str, contents: List[Dict[str, str]]) -> str:
        ...


class TurnRoute(str, Enum):
    FAST_PATH_CLOSING = "fast_path_closing"
    TOOL_AUGMENTED = "tool_augmented"
    PLAIN_MODEL = "plain_model"


@dataclass
class TurnContext:
    """Mutable context passed through each turn step."""
    session: Session
    message: str
    started_at: float = field(default_factory=time.monotonic)
    signals: TurnSignals = field(default_factory=TurnSignals)
    intent: PurchaseIntent = PurchaseIntent.NONE
    route: TurnRoute = TurnRoute.TOOL_AUGMENTED
    model_turn: Optional[ModelTurn] = None
    model_error: bool = False
    tool_rounds: int = 0
    tools_used: List[str] = field(default_factory=list)
    approved: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    cards: List[PresentationCard] = field(default_factory=list)
    unavailable: bool = False
    offer: Optional[Offer] = None
    response_text: str = ""

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def is_closing(self) -> bool:
        return self.route == TurnRoute.FAST_PATH_CLOSING

    @property
    def is_recommendation(self) -> bool:
        return self.model_turn is not None and self.model_turn.intent == INTENT_PRODUCT_RECOMMENDATION


@dataclass(frozen=True)
class TurnOutcome:
    response: str
    route: TurnRoute
    intent: PurchaseIntent
    approved_skus: List[str]
    rejected_count: int
    offer_type: Optional[str]
    fallback_used: bool


class SalesAgent:
    def __init__(
        self,
        model: TurnModel,
        index: CatalogIndex,
        resolver: StockResolver,
        price_cache: PriceCache,
        renderer: CardRenderer,
        governor: CommercialGovernor,
        validator: WhitelistValidator,
        tools: ToolExecutor,
        signal_rules: SignalRules,
        prompt_template: str,
        store_name: str,
        model_timeout_seconds: float = 20.0,
        max_tool_rounds: int = 2,
    ) -> None:
        """Purpose: Wire the guarantee layer and the model into one turn pipeline.
        Inputs/Outputs: Inputs are the model adapter, catalog services, governance,
            tools, rule tables, prompt template and limits; no return value.
        Side Effects / State: Builds the TurnPipeline with ordered steps.
        Dependencies: TurnPipeline/TurnStep and the step methods on this class.
        Failure Modes: None at init; runtime errors surface from handle_turn.
        If Removed: The chat endpoint has nothing to run.
        Testing Notes: Construct with a scripted fake model and a small catalog.
        """
        # Store collaborators and register steps in execution order.
        self._model = model
        self._index = index
        self._resolver = resolver
        self._price_cache = price_cache
        self._renderer = renderer
        self._governor = governor
        self._validator = validator
        self._tools = tools
        self._rules = signal_rules
        self._prompt_template = prompt_template
        self._store_name = store_name
        self._model_timeout = model_timeout_seconds
        self._max_tool_rounds = max(max_tool_rounds, 0)
        self._pipeline = TurnPipeline(
            steps=[
                TurnStep("signals", self._step_signals),
                TurnStep("closing", self._step_closing, skip_if=lambda c: not c.is_closing),
                TurnStep("model_turn", self._step_model_turn, skip_if=lambda c: c.is_closing),
                TurnStep("validate", self._step_validate, skip_if=lambda c: not c.is_recommendation),
                TurnStep("render", self._step_render, skip_if=lambda c: not c.approved),
                TurnStep("governance", self._step_governance, skip_if=lambda c: not c.cards),
                TurnStep("respond", self._step_respond),
                TurnStep("finalize", self._step_finalize, always_run=True),
            ]
        )

    @property
    def validator(self) -> WhitelistValidator:
        return self._validator

    async def handle_turn(self, session: Session, message: str) -> TurnOutcome:
        """Purpose: Process one customer message for a session held by the caller.
        Inputs/Outputs: Inputs are the locked Session and the message; output is a
            TurnOutcome carrying the response text.
        Side Effects / State: Updates whitelist, context, history and commercial state.
        Dependencies: TurnPipeline.run.
        Failure Modes: Model and tool problems become fallback replies; anything
            unexpected propagates to the HTTP boundary.
        If Removed: No chat turn can be answered.
        Testing Notes: Drive with a fake model returning invalid JSON, arrays and
            hallucinated SKUs.
        """
        # Run the pipeline and project the context into an outcome.
        context = TurnContext(session=session, message=message)
        await self._pipeline.run(context)
        turn = context.model_turn
        return TurnOutcome(
            response=context.response_text,
            route=context.route,
            intent=context.intent,
            approved_skus=[card.sku for card in context.cards],
            rejected_count=len(context.rejected),
            offer_type=context.offer.offer_type if context.offer else None,
            fallback_used=bool(turn and turn.is_fallback),
        )

    async def _step_signals(self, context: TurnContext) -> None:
        session = context.session
        session.message_count += 1
        context.signals = read_signals(context.message, self._rules)
        changed = session.context.merge(context.signals.preferences)
        if changed:
            logger.info("session=%s context updated=%s known=%s", session.session_id, changed, session.context.known())
        context.intent = observe(session.commercial, context.signals, session.message_count)

        if context.intent == PurchaseIntent.READY and self._closing_sku(session):
            context.route = TurnRoute.FAST_PATH_CLOSING
        elif context.signals.smalltalk_only:
            context.route = TurnRoute.PLAIN_MODEL
        else:
            context.route = TurnRoute.TOOL_AUGMENTED
        logger.info(
            "session=%s message=%d route=%s intent=%s sentiment=%s",
            session.session_id,
            session.message_count,
            context.route.value,
            context.intent.name,
            ",".join(context.signals.sentiment) or "-",
        )

    def _closing_sku(self, session: Session) -> Optional[str]:
        for sku in reversed(session.commercial.products_shown):
            if sku in session.whitelist and sku in self._index:
                return sku
        return None

    async def _step_closing(self, context: TurnContext) -> None:
        """Purpose: Answer a ready-to-buy message without calling the model.
        Inputs/Outputs: Input is TurnContext; sets response_text.
        Side Effects / State: Marks closing_started on the commercial state.
        Dependencies: Catalog index, price cache and stock resolver for the product.
        Failure Modes: A product that sold out since it was shown yields the
            unavailable reply instead of a checkout prompt.
        If Removed: Ready buyers wait on a model round-trip and may get upsold.
        Testing Notes: Show a product, then send "I'll take it" with a failing model.
        """
        # Only catalog name and URL are used; stock is re-checked first.
        session = context.session
        sku = self._closing_sku(session)
        product = self._index.get(sku) if sku else None
        if product is None:
            context.response_text = UNAVAILABLE_REPLY
            return
        live = await self._price_cache.get(sku)
        stock = self._resolver.resolve_with_live(sku, live)
        if not stock.in_stock:
            logger.info("session=%s closing refused sku=%s reason=out-of-stock", session.session_id, sku)
            context.response_text = UNAVAILABLE_REPLY
            return

        url = live.canonical_url if live and live.canonical_url else self._renderer.fallback_url(sku)
        lines = [f"Wonderful choice! The **{product.name or sku}** is ready to order here: [View Product →]({url})"]
        if not session.customer_email:
            lines.append(
                "If you'd like our team to reserve it and confirm delivery, "
                "just share your email address and postcode."
            )
        elif not session.customer_postcode:
            lines.append("Could you share your postcode so we can confirm delivery options?")
        else:
            lines.append("Our team will be in touch by email to confirm your order and delivery.")
        session.commercial.closing_started = True
        context.response_text = "\n\n".join(lines)
        logger.info("session=%s closing sku=%s", session.session_id, sku)

    def _system_prompt(self, session: Session, tools_enabled: bool) -> str:
        return build_system_prompt(
            self._prompt_template,
            store_name=self._store_name,
            context=session.context,
            whitelist=session.whitelist,
            commercial_flags=session.commercial.flags(),
            tools_block=tools_prompt_block() if tools_enabled else None,
        )

    async def _step_model_turn(self, context: TurnContext) -> None:
        """Purpose: Get a structured reply from the model, running requested tools.
        Inputs/Outputs: Input is TurnContext; sets model_turn (never None afterwards).
        Side Effects / State: Tool calls may replace the whitelist or capture details.
        Dependencies: TurnModel.generate_turn, parse_model_output, ToolExecutor.
        Failure Modes: Timeouts and model errors give the technical-issue reply;
            unusable output gives the context-aware fallback.
        If Removed: Only the closing fast path could answer.
        Testing Notes: A tool request on a smalltalk turn must produce the fallback.
        """
        # Each round rebuilds the prompt because a search may have changed the whitelist.
        session = context.session
        contents: List[Dict[str, str]] = list(session.history)
        contents.append({"role": "user", "content": context.message})
        plain = context.route == TurnRoute.PLAIN_MODEL

        for round_number in range(self._max_tool_rounds + 1):
            tools_enabled = not plain and round_number < self._max_tool_rounds
            prompt = self._system_prompt(session, tools_enabled)
            try:
                raw = await asyncio.wait_for(
                    self._model.generate_turn(prompt, contents),
                    timeout=self._model_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("session=%s model timeout after %.1fs", session.session_id, self._model_timeout)
                self._technical_issue(context)
                return
            except Exception:
                logger.exception("session=%s model call failed", session.session_id)
                self._technical_issue(context)
                return

            turn = parse_model_output(raw)
            if turn is None:
                logger.info("session=%s model output unusable raw=%r", session.session_id, (raw or "")[:200])
                context.model_turn = fallback_turn(session.context, session.message_count)
                return
            if not turn.wants_tools:
                context.model_turn = turn
                logger.info("session=%s model intent=%s", session.session_id, turn.intent)
                return
            if not tools_enabled:
                logger.warning(
                    "session=%s tool request refused route=%s round=%d",
                    session.session_id,
                    context.route.value,
                    round_number,
                )
                context.model_turn = fallback_turn(session.context, session.message_count)
                return

            results = []
            for call in turn.tool_calls:
                context.tools_used.append(call.name)
                results.append({"tool": call.name, "result": await self._tools.execute(session, call)})
            context.tool_rounds += 1
            requested = [{"tool": call.name, "arguments": call.arguments} for call in turn.tool_calls]
            contents.append({"role": "assistant", "content": json.dumps({"tool_calls": requested}, ensure_ascii=False)})
            contents.append({"role": "tool", "content": encode_tool_results(results)})

        context.model_turn = fallback_turn(session.context, session.message_count)

    def _technical_issue(self, context: TurnContext) -> None:
        context.model_error = True
        context.model_turn = ModelTurn(intent="technical_issue", response_text=TECHNICAL_ISSUE_REPLY, is_fallback=True)

    async def _step_validate(self, context: TurnContext) -> None:
        result = self._validator.check(
            context.session_id,
            context.model_turn.selected_skus,
            context.session.whitelist,
        )
        context.approved = result.approved
        context.rejected = result.rejected

    async def _step_render(self, context: TurnContext) -> None:
        """Purpose: Render approved SKUs into cards with fresh stock and prices.
        Inputs/Outputs: Input is TurnContext; sets cards and the unavailable flag.
        Side Effects / State: May populate the price cache.
        Dependencies: PriceCache, StockResolver, CardRenderer.
        Failure Modes: SKUs that are unknown or now sold out are dropped; an empty
            batch sets unavailable so the reply offers alternatives.
        If Removed: Recommendations would show no verified product details.
        Testing Notes: A whitelisted SKU whose stock drops to zero must not render.
        """
        # Membership is re-asserted here so no path can render an unlisted SKU.
        whitelist = set(context.session.whitelist)
        entries = []
        for sku in context.approved:
            if sku not in whitelist:
                continue
            live = await self._price_cache.get(sku)
            entries.append((sku, self._resolver.resolve_with_live(sku, live), live))
        context.cards = self._renderer.render_batch(entries)
        if not context.cards:
            context.unavailable = True
            logger.info("session=%s render empty approved=%s", context.session_id, context.approved)

    async def _step_governance(self, context: TurnContext) -> None:
        session = context.session
        commercial = session.commercial
        record_products_shown(commercial, [card.sku for card in context.cards])
        lead = self._index.get(context.cards[0].sku)
        if lead is None:
            return
        offer = self._governor.offer_for_render(commercial, lead, session.message_count)
        if offer is None:
            return
        record_offer(commercial, offer, session.message_count)
        context.offer = offer
        if offer.offer_type == OFFER_BUNDLE:
            context.cards[0] = replace(context.cards[0], bundle_hint=offer.text)
        logger.info("session=%s offer=%s sku=%s", session.session_id, offer.offer_type, offer.sku or "-")

    async def _step_respond(self, context: TurnContext) -> None:
        if not context.response_text:
            context.response_text = self._assemble(context)
        context.session.add_exchange(context.message, context.response_text)

    def _assemble(self, context: TurnContext) -> str:
        turn = context.model_turn
        if turn is None:
            turn = fallback_turn(context.session.context, context.session.message_count)
        if turn.intent != INTENT_PRODUCT_RECOMMENDATION:
            return turn.response_text or DEFAULT_REPLY

        parts: List[str] = []
        if turn.intro_copy:
            parts.append(turn.intro_copy)
        if turn.selected_skus:
            if context.unavailable or not context.cards:
                parts.append(UNAVAILABLE_REPLY)
                return "\n\n".join(parts)
            if turn.personalisation:
                parts.append(f"*{turn.personalisation}*")
            parts.append(join_cards(context.cards))
            if context.offer is not None and context.offer.offer_type != OFFER_BUNDLE:
                parts.append(context.offer.text)
        if turn.closing_copy:
            parts.append(turn.closing_copy)
        if not parts:
            return fallback_turn(context.session.context, context.session.message_count).response_text
        return "\n\n".join(parts)

    async def _step_finalize(self, context: TurnContext) -> None:
        elapsed_ms = (time.monotonic() - context.started_at) * 1000
        logger.info(
            "session=%s turn done route=%s tools=%s cards=%d rejected=%d offer=%s elapsed_ms=%.0f",
            context.session_id,
            context.route.value,
            ",".join(context.tools_used) or "-",
            len(context.cards),
            len(context.rejected),
            context.offer.offer_type if context.offer else "-",
            elapsed_ms,
        )
