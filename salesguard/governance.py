from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, List, Optional

from .catalog.index import CatalogIndex
from .catalog.schema import Product
from .catalog.stock import StockResolver
from .config import GovernanceRules
from .signals import TurnSignals

logger = logging.getLogger("salesguard.governance")

OFFER_BUNDLE = "bundle"
OFFER_UPSELL = "upsell"
OFFER_CROSS_SELL = "cross_sell"
OFFER_TYPES = (OFFER_BUNDLE, OFFER_UPSELL, OFFER_CROSS_SELL)


class SentimentLevel(IntEnum):
    NEUTRAL = 0
    POSITIVE = 1
    ENTHUSIASTIC = 2


class PurchaseIntent(IntEnum):
    NONE = 0
    BROWSING = 1
    CONSIDERING = 2
    READY = 3


SENTIMENT_TAGS = {
    "positive": SentimentLevel.POSITIVE,
    "enthusiastic": SentimentLevel.ENTHUSIASTIC,
}
INTENT_TAGS = {
    "browsing": PurchaseIntent.BROWSING,
    "considering": PurchaseIntent.CONSIDERING,
    "ready": PurchaseIntent.READY,
}


@dataclass
class OfferTrack:
    offered: bool = False
    declined: bool = False
    count: int = 0
    declined_at: Optional[int] = None


@dataclass
class CommercialState:
    """Per-session offer history and customer signals."""
    tracks: Dict[str, OfferTrack] = field(default_factory=lambda: {t: OfferTrack() for t in OFFER_TYPES})
    total_offers: int = 0
    last_offer_type: Optional[str] = None
    last_offer_at: Optional[int] = None
    sentiment: SentimentLevel = SentimentLevel.NEUTRAL
    price_sensitive: bool = False
    intent_peak: PurchaseIntent = PurchaseIntent.NONE
    cross_sold_skus: List[str] = field(default_factory=list)
    products_shown: List[str] = field(default_factory=list)
    closing_started: bool = False
    checkout_started: bool = False

    def track(self, offer_type: str) -> OfferTrack:
        return self.tracks.setdefault(offer_type, OfferTrack())

    def flags(self) -> Dict[str, object]:
        """Compact view used in the system prompt."""
        return {
            "sentiment": self.sentiment.name.lower(),
            "price_sensitive": self.price_sensitive,
            "purchase_intent": self.intent_peak.name.lower(),
            "offers_made": self.total_offers,
            "declined": [name for name, track in self.tracks.items() if track.declined],
            "closing_started": self.closing_started,
        }


@dataclass(frozen=True)
class Offer:
    offer_type: str
    text: str
    sku: Optional[str] = None


def intent_level(tags) -> PurchaseIntent:
    levels = [INTENT_TAGS[tag] for tag in tags if tag in INTENT_TAGS]
    return max(levels, default=PurchaseIntent.NONE)


def observe(state: CommercialState, signals: TurnSignals, message_count: int) -> PurchaseIntent:
    """Purpose: Fold one message's keyword signals into the commercial state.
    Inputs/Outputs: Inputs are the state, TurnSignals and the session message count;
        output is this message's purchase-intent level.
    Side Effects / State: Raises sentiment monotonically, sets the sticky
        price-sensitivity flag, marks the last offered type declined on a decline.
    Dependencies: SENTIMENT_TAGS and INTENT_TAGS mappings.
    Failure Modes: None; unknown tags are ignored.
    If Removed: Offers ignore declines and the closing fast path never fires.
    Testing Notes: A decline after a bundle offer must set tracks["bundle"].declined.
    """
    # Sentiment never weakens; a decline only affects the last offer type.
    for tag in signals.sentiment:
        level = SENTIMENT_TAGS.get(tag)
        if level is not None and level > state.sentiment:
            state.sentiment = level
    if "price_sensitive" in signals.sentiment and not state.price_sensitive:
        state.price_sensitive = True
        logger.info("governance price-sensitive message=%d", message_count)
    if "decline" in signals.sentiment and state.last_offer_type:
        track = state.track(state.last_offer_type)
        if not track.declined:
            track.declined = True
            track.declined_at = message_count
            logger.info("governance declined offer=%s message=%d", state.last_offer_type, message_count)

    current = intent_level(signals.purchase_intent)
    if current > state.intent_peak:
        state.intent_peak = current
    return current


def is_eligible(offer_type: str, state: CommercialState, rules: GovernanceRules, message_count: int) -> bool:
    if state.total_offers >= rules.max_offers_per_session:
        return False
    track = state.tracks.get(offer_type) or OfferTrack()
    if track.count >= rules.max_offers_per_type:
        return False
    if track.declined:
        if rules.decline_cooldown_messages is None or track.declined_at is None:
            return False
        if message_count - track.declined_at < rules.decline_cooldown_messages:
            return False
    if offer_type == OFFER_UPSELL:
        if message_count < rules.min_messages_before_upsell:
            return False
        if rules.block_upsell_if_price_sensitive and state.price_sensitive:
            return False
    return True


def record_offer(state: CommercialState, offer: Offer, message_count: int) -> None:
    track = state.track(offer.offer_type)
    track.offered = True
    track.count += 1
    state.total_offers += 1
    state.last_offer_type = offer.offer_type
    state.last_offer_at = message_count
    if offer.offer_type == OFFER_CROSS_SELL and offer.sku and offer.sku not in state.cross_sold_skus:
        state.cross_sold_skus.append(offer.sku)


def record_products_shown(state: CommercialState, skus: List[str]) -> None:
    for sku in skus:
        if sku not in state.products_shown:
            state.products_shown.append(sku)


class CommercialGovernor:
    """Pick at most one offer for a rendered product, in priority order."""

    def __init__(self, index: CatalogIndex, resolver: StockResolver, rules: GovernanceRules) -> None:
        self._index = index
        self._resolver = resolver
        self.rules = rules

    def offer_for_render(self, state: CommercialState, product: Product, message_count: int) -> Optional[Offer]:
        """Purpose: Choose the single offer to attach to a freshly rendered product.
        Inputs/Outputs: Inputs are the session state, the rendered Product and the
            message count; output is an Offer or None.
        Side Effects / State: None; callers record the offer once it is shown.
        Dependencies: is_eligible, CatalogIndex and StockResolver for related SKUs.
        Failure Modes: Related SKUs missing from the catalog or out of stock are skipped.
        If Removed: Bundles, assembly and accessory offers are never made.
        Testing Notes: A cover with zero stock must not produce a bundle offer.
        """
        # Bundle, then upsell, then cross-sell; offer text never names another product.
        rules = self.rules
        cover_sku = product.related_products.matching_cover_sku
        if cover_sku and is_eligible(OFFER_BUNDLE, state, rules, message_count):
            if cover_sku in self._index and self._resolver.in_stock(cover_sku):
                return Offer(
                    offer_type=OFFER_BUNDLE,
                    text=(
                        "Matching cover available - ask about our "
                        f"{rules.bundle_discount_percent}% bundle discount!"
                    ),
                    sku=cover_sku,
                )

        if product.specifications.assembly_required and is_eligible(OFFER_UPSELL, state, rules, message_count):
            return Offer(
                offer_type=OFFER_UPSELL,
                text=(
                    "Want it ready to enjoy on day one? Our professional assembly service "
                    f"is available for £{rules.assembly_price_gbp:.2f}."
                ),
            )

        if is_eligible(OFFER_CROSS_SELL, state, rules, message_count):
            for accessory in product.related_products.accessory_skus:
                if accessory in state.cross_sold_skus or accessory not in self._index:
                    continue
                if not self._resolver.in_stock(accessory):
                    continue
                return Offer(
                    offer_type=OFFER_CROSS_SELL,
                    text="There are matching accessories for this set too - just ask and I'll show you.",
                    sku=accessory,
                )
        return None
