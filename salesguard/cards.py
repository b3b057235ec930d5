from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple
from urllib.parse import quote

from .catalog.index import CatalogIndex
from .catalog.schema import PriceData, Product, StockRecord

logger = logging.getLogger("salesguard.cards")

UNAVAILABLE_REPLY = (
    "I'm sorry, but the products I wanted to show you aren't currently available. "
    "Let me find some alternatives - what's most important to you: material, size, or style?"
)
MAX_FEATURES = 3
CARD_SEPARATOR = "\n\n---\n\n"


@dataclass(frozen=True)
class PresentationCard:
    """Customer-facing product card assembled only from catalog and live data."""
    sku: str
    name: str
    image_url: str
    features: Tuple[str, ...]
    warranty: Optional[str]
    price_text: str
    stock_message: str
    product_url: str
    bundle_hint: Optional[str] = None

    def to_markdown(self) -> str:
        lines = [f"**{self.name}**"]
        if self.image_url:
            lines.append(f"[![{self.name}]({self.image_url})]({self.product_url})")
        if self.features:
            lines.append("")
            lines.append("**Why customers love this:**")
            lines.extend(f"- {feature}" for feature in self.features)
        if self.warranty:
            lines.append("")
            lines.append(f"**Warranty:** {self.warranty}")
        lines.append("")
        lines.append(f"**Price:** {self.price_text}")
        lines.append(f"**Stock:** {self.stock_message}")
        lines.append("")
        lines.append(f"[View Product →]({self.product_url})")
        if self.bundle_hint:
            lines.append("")
            lines.append(f"*{self.bundle_hint}*")
        return "\n".join(lines)


def stock_message(available: int) -> str:
    if available <= 5:
        return f"Only {available} left!"
    if available <= 20:
        return f"Low stock - {available} remaining"
    return "In stock"


def format_price(amount: float) -> str:
    return f"£{amount:.2f}"


def card_features(product: Product) -> Tuple[str, ...]:
    # Seat count leads, then the first listed pro of each material.
    features: List[str] = []
    if product.seats:
        features.append(f"Seats {product.seats} people")
    for material in product.materials_and_care:
        first_pro = material.pros.split(",")[0].strip()
        if first_pro and first_pro not in features:
            features.append(first_pro)
    return tuple(features[:MAX_FEATURES])


def card_warranty(product: Product) -> Optional[str]:
    for material in product.materials_and_care:
        if material.warranty:
            if material.name:
                return f"{material.name}: {material.warranty}"
            return material.warranty
    return None


class CardRenderer:
    """Render verified SKUs into PresentationCards with a render-time stock check."""

    def __init__(self, index: CatalogIndex, store_base_url: str) -> None:
        self._index = index
        self._base_url = store_base_url.rstrip("/")

    def fallback_url(self, sku: str) -> str:
        return f"{self._base_url}/search?q={quote(sku)}"

    def render(
        self,
        sku: str,
        stock: StockRecord,
        price: Optional[PriceData] = None,
    ) -> Optional[PresentationCard]:
        """Purpose: Build one card for a whitelisted SKU from catalog and live data.
        Inputs/Outputs: Inputs are the SKU, its resolved StockRecord and optional live
            PriceData; output is a PresentationCard or None.
        Side Effects / State: Logs refusals.
        Dependencies: CatalogIndex for product facts.
        Failure Modes: Unknown SKUs and zero stock return None.
        If Removed: Product facts would have to come from model text.
        Testing Notes: Same inputs must give byte-identical to_markdown() output.
        """
        # Refuse before formatting anything.
        product = self._index.get(sku)
        if product is None:
            logger.warning("card refused sku=%s reason=unknown", sku)
            return None
        if stock.available <= 0:
            logger.info("card refused sku=%s reason=out-of-stock", sku)
            return None

        if price is not None and price.price > 0:
            price_text = format_price(price.price)
        elif product.list_price:
            price_text = format_price(product.list_price)
        else:
            price_text = "Price on request"

        if price is not None and price.canonical_url:
            product_url = price.canonical_url
        else:
            product_url = self.fallback_url(sku)

        return PresentationCard(
            sku=sku,
            name=product.name or sku,
            image_url=product.product_identity.image_url,
            features=card_features(product),
            warranty=card_warranty(product),
            price_text=price_text,
            stock_message=stock_message(stock.available),
            product_url=product_url,
        )

    def render_batch(
        self,
        entries: Sequence[Tuple[str, StockRecord, Optional[PriceData]]],
    ) -> List[PresentationCard]:
        """Render several SKUs, silently dropping any that fail."""
        cards: List[PresentationCard] = []
        for sku, stock, price in entries:
            card = self.render(sku, stock, price)
            if card is not None:
                cards.append(card)
        return cards


def join_cards(cards: Sequence[PresentationCard]) -> str:
    return CARD_SEPARATOR.join(card.to_markdown() for card in cards)
