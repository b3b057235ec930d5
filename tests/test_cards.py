from __future__ import annotations

from conftest import STORE_URL, faro_products, make_product

from salesguard.cards import CardRenderer, join_cards, stock_message
from salesguard.catalog.index import build_index
from salesguard.catalog.schema import PriceData, StockRecord


def _renderer(products=None) -> CardRenderer:
    return CardRenderer(build_index(products or faro_products()), STORE_URL)


def test_card_is_built_from_catalog_facts() -> None:
    live = PriceData(price=1899.0, stock_quantity=12, canonical_url="https://www.mint-outdoor.com/products/faro")
    card = _renderer().render("FARO-LOUNGE-SET", StockRecord(sku="FARO-LOUNGE-SET", available=12), live)

    assert card is not None
    assert card.features == ("Seats 9 people", "UV-tested to 2000 hours")
    assert card.warranty == "Rattan: 2 years structural and colour retention"
    assert card.price_text == "£1899.00"
    assert card.stock_message == "Low stock - 12 remaining"
    markdown = card.to_markdown()
    assert markdown.startswith("**Faro 9 Seater Rattan Lounge Set**")
    assert "[View Product →](https://www.mint-outdoor.com/products/faro)" in markdown


def test_render_is_deterministic() -> None:
    renderer = _renderer()
    stock = StockRecord(sku="FARO-LOUNGE-SET", available=12)
    first = renderer.render("FARO-LOUNGE-SET", stock).to_markdown()
    second = renderer.render("FARO-LOUNGE-SET", stock).to_markdown()
    assert first == second


def test_zero_stock_and_unknown_sku_are_refused() -> None:
    renderer = _renderer()
    assert renderer.render("FARO-COVER", StockRecord(sku="FARO-COVER", available=0)) is None
    assert renderer.render("NOPE", StockRecord(sku="NOPE", available=50)) is None


def test_fallbacks_for_price_and_url() -> None:
    products = [make_product("NO PRICE/1", price=None), make_product("LISTED", price=499.5)]
    renderer = _renderer(products)

    bare = renderer.render("NO PRICE/1", StockRecord(sku="NO PRICE/1", available=100))
    listed = renderer.render("LISTED", StockRecord(sku="LISTED", available=3), PriceData(price=0.0))

    assert bare.price_text == "Price on request"
    assert bare.product_url == f"{STORE_URL}/search?q=NO%20PRICE/1"
    assert bare.warranty is None
    assert bare.features == ()
    assert listed.price_text == "£499.50"
    assert listed.stock_message == "Only 3 left!"


def test_features_cap_at_three_and_skip_repeats() -> None:
    product = make_product(
        "MULTI",
        seats=4,
        materials=[
            {"name": "Teak", "pros": "Durable, Natural"},
            {"name": "Steel", "pros": ["Durable"]},
            {"name": "Glass", "pros": "Easy clean"},
            {"name": "Foam", "pros": "Soft"},
        ],
    )
    card = _renderer([product]).render("MULTI", StockRecord(sku="MULTI", available=30))
    assert card.features == ("Seats 4 people", "Durable", "Easy clean")
    assert card.stock_message == "In stock"


def test_stock_message_thresholds() -> None:
    assert stock_message(5) == "Only 5 left!"
    assert stock_message(6) == "Low stock - 6 remaining"
    assert stock_message(20) == "Low stock - 20 remaining"
    assert stock_message(21) == "In stock"


def test_batch_drops_refused_cards_and_join_uses_separator() -> None:
    renderer = _renderer()
    cards = renderer.render_batch(
        [
            ("FARO-LOUNGE-SET", StockRecord(sku="FARO-LOUNGE-SET", available=12), None),
            ("FARO-COVER", StockRecord(sku="FARO-COVER", available=0), None),
            ("FARO-LOUNGE-SET", StockRecord(sku="FARO-LOUNGE-SET", available=12), None),
        ]
    )
    assert len(cards) == 2
    assert join_cards(cards).count("\n\n---\n\n") == 1
