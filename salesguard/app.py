from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from pathlib import Path
from typing import AsyncIterator, Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cards import CardRenderer
from .catalog.index import build_index
from .catalog.loader import CatalogLoader, load_inventory_snapshot
from .catalog.price_cache import PriceCache, PriceFetcher
from .catalog.search import SearchEngine
from .catalog.stock import StockResolver
from .config import Settings, load_settings
from .gemini_client import GeminiClient
from .governance import CommercialGovernor
from .mailer import EscalationMailer
from .models import MAX_MESSAGE_CHARS, ChatRequest, ChatResponse, HealthResponse
from .pricing_client import ShopifyPricingClient
from .prompt_loader import load_prompt
from .sales_agent import SalesAgent, TurnModel
from .session_store import InMemorySessionStore, SessionStore, run_sweeper
from .signals import load_signal_rules
from .tools import ToolExecutor
from .turn_parser import TECHNICAL_ISSUE_REPLY
from .whitelist import WhitelistValidator

BASE_DIR = Path(__file__).resolve().parent
ENV_PATH = BASE_DIR / ".." / ".env"

MISSING_FIELDS_REPLY = "Please provide a message and session ID."
MESSAGE_TOO_LONG_REPLY = f"Your message is too long. Please keep it to {MAX_MESSAGE_CHARS} characters or fewer."

logger = logging.getLogger("salesguard.api")


def configure_logging(level_name: str) -> None:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=log_level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    logging.getLogger("salesguard").setLevel(log_level)


def create_app(
    settings: Optional[Settings] = None,
    model: Optional[TurnModel] = None,
    pricing_fetcher: Optional[PriceFetcher] = None,
    mailer: Optional[EscalationMailer] = None,
    session_store: Optional[SessionStore] = None,
) -> FastAPI:
    """Purpose: Build the FastAPI app with the catalog, guard layer and model wired in.
    Inputs/Outputs: Optional settings and collaborator overrides; returns a FastAPI app.
    Side Effects / State: Loads .env, configures logging, reads catalog, inventory,
        rules and prompt files; the lifespan runs the session sweeper.
    Dependencies: Every salesguard component plus httpx for live pricing.
    Failure Modes: Missing GEMINI_API_KEY (without a model override), missing rule
        or prompt files and invalid numeric env values raise at startup. A missing
        catalog only logs an error.
    If Removed: The service cannot start.
    Testing Notes: Pass a fake model and pricing fetcher, then use TestClient.
    """
    # Environment first so load_settings sees .env values.
    if ENV_PATH.exists():
        load_dotenv(ENV_PATH, override=False)
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    products, catalog_meta = CatalogLoader(settings.catalog_path).load()
    index = build_index(products)
    snapshot = load_inventory_snapshot(settings.inventory_path)
    resolver = StockResolver(index, snapshot, default_available=settings.default_stock)

    http = httpx.AsyncClient(timeout=settings.pricing_timeout_seconds)
    if pricing_fetcher is None:
        pricing = ShopifyPricingClient(
            http,
            store_domain=settings.shopify_store_domain,
            access_token=settings.shopify_access_token,
            store_base_url=settings.store_base_url,
            timeout_seconds=settings.pricing_timeout_seconds,
        )
        if not pricing.enabled:
            logger.info("live pricing disabled: SHOPIFY_ACCESS_TOKEN or SHOPIFY_STORE_DOMAIN not set")
        pricing_fetcher = pricing.get_product_by_handle
    price_cache = PriceCache(pricing_fetcher, ttl_seconds=settings.price_cache_ttl_seconds)

    if mailer is None:
        mailer = EscalationMailer(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            sender=settings.email_from,
            recipients=settings.escalation_recipients,
        )
    store = session_store or InMemorySessionStore(
        history_limit=settings.history_limit,
        idle_seconds=settings.session_idle_seconds,
        max_sessions=settings.max_sessions or None,
    )

    engine = SearchEngine(index, resolver)
    agent = SalesAgent(
        model=model or GeminiClient(settings),
        index=index,
        resolver=resolver,
        price_cache=price_cache,
        renderer=CardRenderer(index, settings.store_base_url),
        governor=CommercialGovernor(index, resolver, settings.governance),
        validator=WhitelistValidator(),
        tools=ToolExecutor(engine, mailer, max_results=settings.max_search_results),
        signal_rules=load_signal_rules(settings.signal_rules_path),
        prompt_template=load_prompt(settings.prompts_dir / "system_prompt.md"),
        store_name=settings.store_name,
        model_timeout_seconds=settings.model_timeout_seconds,
        max_tool_rounds=settings.max_tool_rounds,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        sweeper = asyncio.create_task(run_sweeper(store, settings.sweep_interval_seconds))
        logger.info(
            "salesguard ready products=%d inventory_records=%d catalog=%s updated_at=%s",
            len(index),
            len(snapshot),
            catalog_meta.file_name,
            catalog_meta.updated_at or "-",
        )
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            await http.aclose()

    app = FastAPI(title="Salesguard Sales Assistant", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.state.settings = settings
    app.state.agent = agent
    app.state.sessions = store
    app.state.price_cache = price_cache

    @app.exception_handler(RequestValidationError)
    async def invalid_body(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        logger.info("chat request rejected errors=%d", len(errors))
        too_long = any(
            error.get("type") == "string_too_long" and tuple(error.get("loc", ()))[-1:] == ("message",)
            for error in errors
        )
        reply = MESSAGE_TOO_LONG_REPLY if too_long else MISSING_FIELDS_REPLY
        return JSONResponse(status_code=400, content={"response": reply})

    @app.post("/chat", response_model=ChatResponse)
    async def chat(request: ChatRequest) -> JSONResponse:
        """Purpose: Handle one chat message for a session.
        Inputs/Outputs: Input is ChatRequest; output is {response, sessionId}.
        Side Effects / State: Holds the session lock for the whole turn.
        Dependencies: SessionStore.checkout and SalesAgent.handle_turn.
        Failure Modes: Blank fields give 400; unexpected errors give a generic 500
            without internal details.
        If Removed: Core chat functionality is unavailable.
        Testing Notes: Send blank, malformed and valid bodies; check status and body.
        """
        # Validate presence here so blank strings get the same 400 as missing ones.
        message = (request.message or "").strip()
        session_id = (request.sessionId or "").strip()
        if not message or not session_id:
            return JSONResponse(status_code=400, content={"response": MISSING_FIELDS_REPLY})
        try:
            async with store.checkout(session_id) as session:
                outcome = await agent.handle_turn(session, message)
        except Exception:
            logger.exception("chat turn failed session=%s", session_id)
            return JSONResponse(status_code=500, content={"response": TECHNICAL_ISSUE_REPLY})
        payload = ChatResponse(response=outcome.response, sessionId=session_id)
        return JSONResponse(content=payload.model_dump())

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            status="healthy",
            products=len(index),
            inventory_records=len(snapshot),
            sessions=len(store),
            catalog_sha256=catalog_meta.sha256[:12],
        )

    return app
