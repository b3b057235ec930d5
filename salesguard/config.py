from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class GovernanceRules:
    """Tunable limits for bundle, upsell and cross-sell offers."""
    max_offers_per_session: int = 3
    max_offers_per_type: int = 1
    decline_cooldown_messages: Optional[int] = None
    min_messages_before_upsell: int = 3
    block_upsell_if_price_sensitive: bool = True
    bundle_discount_percent: int = 20
    assembly_price_gbp: float = 69.95


@dataclass(frozen=True)
class Settings:
    """Configuration container for the model, catalog, pricing and session limits."""
    gemini_api_key: str
    gemini_model: str
    catalog_path: Path
    inventory_path: Path
    signal_rules_path: Path
    prompts_dir: Path
    store_name: str
    store_base_url: str
    shopify_store_domain: str
    shopify_access_token: str
    price_cache_ttl_seconds: float
    pricing_timeout_seconds: float
    default_stock: int
    max_search_results: int
    history_limit: int
    session_idle_seconds: float
    sweep_interval_seconds: float
    max_sessions: int
    model_timeout_seconds: float
    max_tool_rounds: int
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    email_from: str
    escalation_recipients: Tuple[str, ...]
    cors_origins: Tuple[str, ...] = ("*",)
    log_level: str = "INFO"
    governance: GovernanceRules = field(default_factory=GovernanceRules)


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default data locations.
    Failure Modes: Invalid numeric env values raise ValueError at startup.
    If Removed: The app factory cannot wire the catalog, model or pricing client.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve data paths first, then the numeric limits.
    resources_dir = (BASE_DIR / ".." / "resources").resolve()
    catalog_path = Path(os.getenv("CATALOG_PATH") or resources_dir / "product_knowledge_center.json")
    inventory_path = Path(os.getenv("INVENTORY_PATH") or resources_dir / "inventory_data.json")
    rules_path = Path(os.getenv("SIGNAL_RULES_PATH") or BASE_DIR / "data" / "signal_rules.json")

    cooldown_raw = os.getenv("DECLINE_COOLDOWN_MESSAGES", "").strip()
    governance = GovernanceRules(
        max_offers_per_session=int(os.getenv("MAX_OFFERS_PER_SESSION", "3")),
        decline_cooldown_messages=int(cooldown_raw) if cooldown_raw else None,
        min_messages_before_upsell=int(os.getenv("MIN_MESSAGES_BEFORE_UPSELL", "3")),
        block_upsell_if_price_sensitive=_env_flag("BLOCK_UPSELL_IF_PRICE_SENSITIVE", True),
    )

    recipients = os.getenv("ESCALATION_RECIPIENTS", "sales@mint-outdoor.com")
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        catalog_path=catalog_path,
        inventory_path=inventory_path,
        signal_rules_path=rules_path,
        prompts_dir=(BASE_DIR / "prompts").resolve(),
        store_name=os.getenv("STORE_NAME", "MINT Outdoor"),
        store_base_url=os.getenv("STORE_BASE_URL", "https://www.mint-outdoor.com").rstrip("/"),
        shopify_store_domain=os.getenv("SHOPIFY_STORE_DOMAIN", ""),
        shopify_access_token=os.getenv("SHOPIFY_ACCESS_TOKEN", ""),
        price_cache_ttl_seconds=float(os.getenv("PRICE_CACHE_TTL_SECONDS", "300")),
        pricing_timeout_seconds=float(os.getenv("PRICING_TIMEOUT_SECONDS", "8")),
        default_stock=int(os.getenv("DEFAULT_STOCK", "100")),
        max_search_results=int(os.getenv("MAX_SEARCH_RESULTS", "5")),
        history_limit=int(os.getenv("HISTORY_LIMIT", "8")),
        session_idle_seconds=float(os.getenv("SESSION_IDLE_SECONDS", "1800")),
        sweep_interval_seconds=float(os.getenv("SWEEP_INTERVAL_SECONDS", "60")),
        max_sessions=int(os.getenv("MAX_SESSIONS", "0")),
        model_timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "20")),
        max_tool_rounds=int(os.getenv("MAX_TOOL_ROUNDS", "2")),
        smtp_host=os.getenv("SMTP_HOST", ""),
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_user=os.getenv("SMTP_USER", ""),
        smtp_password=os.getenv("SMTP_PASSWORD", ""),
        email_from=os.getenv("EMAIL_FROM", "") or os.getenv("SMTP_USER", ""),
        escalation_recipients=tuple(addr.strip() for addr in recipients.split(",") if addr.strip()),
        cors_origins=tuple(o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        governance=governance,
    )


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}
