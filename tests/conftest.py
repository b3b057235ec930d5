"""Shared fixtures: catalog builders, a fake clock and a scripted model."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import pytest

from salesguard.cards import CardRenderer
from salesguard.catalog.index import build_index
from salesguard.catalog.price_cache import PriceCache
from salesguard.catalog.schema import PriceData, Product
from salesguard.catalog.search import SearchEngine
from salesguard.catalog.stock import StockResolver
from salesguard.config import GovernanceRules
from salesguard.governance import CommercialGovernor
from salesguard.prompt_loader import load_prompt
from salesguard.sales_agent import SalesAgent
from salesguard.session_store import InMemorySessionStore
from salesguard.signals import load_signal_rules
from salesguard.tools import ToolExecutor
from salesguard.whitelist import WhitelistValidator

PACKAGE_DIR = Path(__file__).resolve().parents[1] / "salesguard"
RULES_PATH = PACKAGE_DIR / "data" / "signal_rules.json"
PROMPT_PATH = PACKAGE_DIR / "prompts" / "system_prompt.md"
STORE_URL = "https://www.mint-outdoor.com"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def product_dict(
    sku: str,
    name: str = "",
    category: str = "Lounge Sets",
    material: str = "Rattan",
    taxonomy: str = "",
    seats: Any = None,
    stock: Optional[int] = None,
    price: Any = 999.0,
    cover: Optional[str] = None,
    accessories: Sequence[str] = (),
    assembly: bool = False,
    materials: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "product_identity": {
            "sku": sku,
            "product_name": name or sku.replace("-", " ").title(),
            "image_url": f"https://cdn.example.com/{sku.lower()}.jpg",
            "price_gbp": price,
        },
        "description_and_category": {
            "primary_category": category,
            "material_type": material,
            "taxonomy_type": taxonomy,
        },
        "specifications": {"seats": seats, "assembly_required": assembly},
        "materials_and_care": materials or [],
        "related_products": {"matching_cover_sku": cover, "accessory_skus": list(accessories)},
    }
    if stock is not None:
        data["logistics_and_inventory"] = {"inventory": {"available": stock}}
    return data


def make_product(sku: str, **kwargs: Any) -> Product:
    return Product.model_validate(product_dict(sku, **kwargs))


def faro_products() -> List[Product]:
    return [
        make_product(
            "FARO-LOUNGE-SET",
            name="Faro 9 Seater Rattan Lounge Set",
            taxonomy="lounge set",
            seats=9,
            stock=12,
            price=1899.0,
            cover="FARO-COVER",
            assembly=True,
            materials=[
                {
                    "name": "Rattan",
                    "warranty": "2 years structural and colour retention",
                    "pros": "UV-tested to 2000 hours, comfortable, affordable",
                }
            ],
        ),
        make_product("FARO-COVER", name="Faro Cover", category="Covers", material="Polyester", stock=0),
    ]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class ScriptedModel:
    """Fake model returning queued replies; dicts are JSON-encoded, exceptions raised."""

    def __init__(self, replies: Sequence[Union[str, Dict[str, Any], BaseException]] = ()) -> None:
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def generate_turn(self, system_instruction: str, contents: List[Dict[str, str]]) -> str:
        self.calls.append({"system": system_instruction, "contents": list(contents)})
        if not self.replies:
            raise AssertionError("model called more times than scripted")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


@pytest.fixture
def signal_rules():
    return load_signal_rules(RULES_PATH)


class AgentHarness:
    def __init__(
        self,
        products: List[Product],
        model: ScriptedModel,
        snapshot: Optional[Dict[str, int]] = None,
        prices: Optional[Dict[str, PriceData]] = None,
        governance: Optional[GovernanceRules] = None,
        mailer: Any = None,
        model_timeout_seconds: float = 5.0,
    ) -> None:
        self.index = build_index(products)
        self.resolver = StockResolver(self.index, snapshot or {}, default_available=100)
        self.prices = dict(prices or {})

        async def fetch(sku: str) -> Optional[PriceData]:
            return self.prices.get(sku)

        self.model = model
        self.validator = WhitelistValidator()
        self.engine = SearchEngine(self.index, self.resolver)
        self.agent = SalesAgent(
            model=model,
            index=self.index,
            resolver=self.resolver,
            price_cache=PriceCache(fetch, ttl_seconds=300),
            renderer=CardRenderer(self.index, STORE_URL),
            governor=CommercialGovernor(self.index, self.resolver, governance or GovernanceRules()),
            validator=self.validator,
            tools=ToolExecutor(self.engine, mailer, max_results=5),
            signal_rules=load_signal_rules(RULES_PATH),
            prompt_template=load_prompt(PROMPT_PATH),
            store_name="MINT Outdoor",
            model_timeout_seconds=model_timeout_seconds,
            max_tool_rounds=2,
        )
        self.store = InMemorySessionStore(history_limit=8)

    async def say(self, session_id: str, message: str):
        async with self.store.checkout(session_id) as session:
            return await self.agent.handle_turn(session, message)
