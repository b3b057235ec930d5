from __future__ import annotations

from conftest import faro_products, make_product

from salesguard.catalog.index import build_index
from salesguard.catalog.search import SearchCriteria, SearchEngine
from salesguard.catalog.stock import StockResolver


def _engine(products, snapshot=None) -> SearchEngine:
    index = build_index(products)
    return SearchEngine(index, StockResolver(index, snapshot or {}, default_available=100))


def _lounge_catalog():
    return [
        make_product("LOUNGE-4", taxonomy="lounge", seats=4, stock=10),
        make_product("LOUNGE-9-A", taxonomy="lounge", seats=9, stock=10),
        make_product("LOUNGE-7", taxonomy="lounge", seats=7, stock=10),
        make_product("LOUNGE-9-B", taxonomy="lounge", seats="9 seats", stock=3),
        make_product("LOUNGE-9-SOLD", taxonomy="lounge", seats=9, stock=0),
        make_product("DINING-6", category="Dining Sets", material="Teak", taxonomy="dining", seats=6, stock=5),
    ]


def test_faro_scenario_returns_only_the_lounge_set() -> None:
    engine = _engine(faro_products())

    result = engine.search(SearchCriteria(furniture_type="lounge", min_seats=6))

    assert result.skus == ["FARO-LOUNGE-SET"]
    assert not result.capacity_fallback


def test_seat_fallback_returns_only_largest_capacity() -> None:
    engine = _engine(_lounge_catalog())

    result = engine.search(SearchCriteria(furniture_type="lounge", min_seats=12))

    assert result.capacity_fallback
    assert result.skus == ["LOUNGE-9-A", "LOUNGE-9-B"]
    assert {item.seats for item in result.items} == {9}


def test_sold_out_capacity_match_still_triggers_fallback() -> None:
    engine = _engine(
        [
            make_product("BIG-12", taxonomy="lounge", seats=12, stock=0),
            make_product("MID-9", taxonomy="lounge", seats=9, stock=5),
        ]
    )

    result = engine.search(SearchCriteria(furniture_type="lounge", min_seats=12))

    assert result.skus == ["MID-9"]
    assert result.capacity_fallback
    assert result.max_seats == 9


def test_seat_filter_orders_closest_capacity_first() -> None:
    engine = _engine(_lounge_catalog())

    result = engine.search(SearchCriteria(furniture_type="lounge", min_seats=5))

    assert result.skus == ["LOUNGE-7", "LOUNGE-9-A", "LOUNGE-9-B"]


def test_stock_filter_has_final_say() -> None:
    products = _lounge_catalog() + [make_product("LOUNGE-SNAP-ZERO", taxonomy="lounge", seats=6)]
    engine = _engine(products, snapshot={"LOUNGE-SNAP-ZERO": 0})

    result = engine.search(SearchCriteria(name_query="lounge"))

    assert result.skus == ["LOUNGE-4", "LOUNGE-9-A", "LOUNGE-7", "LOUNGE-9-B"]


def test_snapshot_zero_does_not_hide_embedded_stock() -> None:
    engine = _engine(_lounge_catalog(), snapshot={"LOUNGE-7": 0})
    assert "LOUNGE-7" in engine.search(SearchCriteria(furniture_type="lounge")).skus


def test_empty_catalog_and_conflicting_filters_return_empty() -> None:
    assert _engine([]).search(SearchCriteria(furniture_type="lounge", min_seats=4)).items == []

    engine = _engine(_lounge_catalog())
    result = engine.search(SearchCriteria(furniture_type="dining", material="rattan"))
    assert result.items == []
    assert not result.capacity_fallback


def test_furniture_type_rules_and_unknown_type() -> None:
    products = [
        make_product("SOFA", name="Havana Sofa", category="Garden", taxonomy=""),
        make_product("CORNER", name="Bali Corner Set", category="Garden"),
        make_product("SUNBED", name="Sol Sun Bed", category="Garden"),
        make_product("TABLE", name="Oak Table", category="Dining Tables"),
    ]
    engine = _engine(products)

    assert engine.search(SearchCriteria(furniture_type="lounge")).skus == ["SOFA"]
    assert engine.search(SearchCriteria(furniture_type="corner")).skus == ["CORNER"]
    assert engine.search(SearchCriteria(furniture_type="lounger")).skus == ["SUNBED"]
    assert engine.search(SearchCriteria(furniture_type="dining")).skus == ["TABLE"]
    assert len(engine.search(SearchCriteria(furniture_type="hammock")).skus) == 4


def test_material_matches_type_category_or_name_and_results_truncate() -> None:
    products = [make_product(f"ALU-{n}", material="Aluminium", seats=n) for n in range(1, 8)]
    products.append(make_product("TEAK-NAME", name="Teak Style Bench", material="Acacia"))
    engine = _engine(products)

    assert engine.search(SearchCriteria(material="teak")).skus == ["TEAK-NAME"]
    assert len(engine.search(SearchCriteria(material="Aluminium"), max_results=5).items) == 5


def test_requires_sku_and_category() -> None:
    engine = _engine([make_product("NO-CAT", category="")])
    assert engine.search(SearchCriteria()).items == []


def test_criteria_from_tool_arguments() -> None:
    criteria = SearchCriteria.from_arguments(
        {"furnitureType": "lounge", "seatCount": "6", "material": " rattan ", "productName": ""}
    )
    assert criteria == SearchCriteria(furniture_type="lounge", material="rattan", min_seats=6, name_query=None)
    assert SearchCriteria.from_arguments({"seatCount": 0}).min_seats is None
