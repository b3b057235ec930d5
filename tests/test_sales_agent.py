from __future__ import annotations

import asyncio

import pytest
from conftest import AgentHarness, ScriptedModel, faro_products, make_product

from salesguard.cards import UNAVAILABLE_REPLY
from salesguard.catalog.schema import PriceData
from salesguard.governance import PurchaseIntent
from salesguard.sales_agent import TurnRoute
from salesguard.turn_parser import CLARIFY_TYPE_REPLY, GREETING_REPLY, TECHNICAL_ISSUE_REPLY

SEARCH_LOUNGE = {"tool": "search_products", "arguments": {"furnitureType": "lounge", "seatCount": 6}}
RECOMMEND_FARO = {
    "intent": "product_recommendation",
    "intro_copy": "Here's a set that would suit your garden.",
    "selected_skus": ["FARO-LOUNGE-SET", "FARO-COVER"],
    "closing_copy": "Would you like to know more?",
}


def _show_faro(model_replies=()) -> AgentHarness:
    return AgentHarness(faro_products(), ScriptedModel([SEARCH_LOUNGE, RECOMMEND_FARO, *model_replies]))


@pytest.mark.anyio
async def test_hallucinated_cover_is_stripped_from_recommendation() -> None:
    harness = _show_faro()

    outcome = await harness.say("s1", "I'm looking for a lounge set for 6 people")

    assert outcome.route == TurnRoute.TOOL_AUGMENTED
    assert outcome.approved_skus == ["FARO-LOUNGE-SET"]
    assert outcome.rejected_count == 1
    assert harness.validator.rejected_total == 1
    assert "**Faro 9 Seater Rattan Lounge Set**" in outcome.response
    assert "Faro Cover" not in outcome.response
    assert "FARO-COVER" not in outcome.response
    assert outcome.response.startswith("Here's a set that would suit your garden.")
    assert outcome.response.endswith("Would you like to know more?")


@pytest.mark.anyio
async def test_second_round_sees_tool_results_and_new_whitelist() -> None:
    harness = _show_faro()
    await harness.say("s1", "I'm looking for a lounge set for 6 people")

    first, second = harness.model.calls
    assert "No search performed yet" in first["system"]
    assert "FARO-LOUNGE-SET" in second["system"]
    roles = [entry["role"] for entry in second["contents"]]
    assert roles == ["user", "assistant", "tool"]
    assert '"available_skus": ["FARO-LOUNGE-SET"]' in second["contents"][-1]["content"]

    session = harness.store.get("s1")
    assert session.whitelist == ["FARO-LOUNGE-SET"]
    assert session.commercial.products_shown == ["FARO-LOUNGE-SET"]
    assert len(session.history) == 2


@pytest.mark.anyio
async def test_only_unlisted_skus_gives_unavailable_reply() -> None:
    model = ScriptedModel([{"intent": "product_recommendation", "selected_skus": ["GHOST-1"]}])
    harness = AgentHarness(faro_products(), model)

    outcome = await harness.say("s1", "show me a dining set")

    assert outcome.response == UNAVAILABLE_REPLY
    assert outcome.approved_skus == []
    assert "GHOST" not in outcome.response


@pytest.mark.anyio
async def test_new_search_replaces_whitelist_before_validation() -> None:
    harness = _show_faro(
        [
            {"tool": "search_products", "arguments": {"furnitureType": "dining"}},
            {"intent": "product_recommendation", "selected_skus": ["FARO-LOUNGE-SET"]},
        ]
    )
    await harness.say("s1", "I'm looking for a lounge set for 6 people")

    outcome = await harness.say("s1", "actually show me dining sets instead")

    assert outcome.response == UNAVAILABLE_REPLY
    assert harness.store.get("s1").whitelist == []


@pytest.mark.anyio
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Sure! Here are some lovely sofas.", GREETING_REPLY),
        ('["FARO-LOUNGE-SET"]', GREETING_REPLY),
        ('{"response_text": "missing intent"}', GREETING_REPLY),
    ],
)
async def test_unusable_model_output_uses_fallback(raw, expected) -> None:
    harness = AgentHarness(faro_products(), ScriptedModel([raw]))

    outcome = await harness.say("s1", "what can you do")

    assert outcome.response == expected
    assert outcome.fallback_used


@pytest.mark.anyio
async def test_fallback_asks_next_missing_preference() -> None:
    harness = AgentHarness(faro_products(), ScriptedModel(["not json", "still not json"]))
    await harness.say("s1", "what can you do")

    outcome = await harness.say("s1", "something for 6 people")

    assert outcome.response == CLARIFY_TYPE_REPLY


class SlowModel:
    async def generate_turn(self, system_instruction, contents):
        await asyncio.sleep(5)
        return "{}"


@pytest.mark.anyio
async def test_model_timeout_and_errors_give_technical_reply() -> None:
    slow = AgentHarness(faro_products(), SlowModel(), model_timeout_seconds=0.05)
    assert (await slow.say("s1", "show me lounge sets")).response == TECHNICAL_ISSUE_REPLY

    broken = AgentHarness(faro_products(), ScriptedModel([RuntimeError("quota exceeded")]))
    outcome = await broken.say("s1", "show me lounge sets")
    assert outcome.response == TECHNICAL_ISSUE_REPLY
    assert "quota" not in outcome.response


@pytest.mark.anyio
async def test_ready_buyer_takes_closing_fast_path_without_model() -> None:
    harness = _show_faro()
    await harness.say("s1", "I'm looking for a lounge set for 6 people")

    outcome = await harness.say("s1", "Perfect, I'll take it")

    assert outcome.route == TurnRoute.FAST_PATH_CLOSING
    assert outcome.intent == PurchaseIntent.READY
    assert len(harness.model.calls) == 2
    assert "**Faro 9 Seater Rattan Lounge Set**" in outcome.response
    assert "https://www.mint-outdoor.com/search?q=FARO-LOUNGE-SET" in outcome.response
    assert "email address and postcode" in outcome.response
    assert harness.store.get("s1").commercial.closing_started


@pytest.mark.anyio
async def test_ready_without_shown_product_goes_to_model() -> None:
    model = ScriptedModel([{"intent": "clarification", "response_text": "Which set caught your eye?"}])
    harness = AgentHarness(faro_products(), model)

    outcome = await harness.say("s1", "I want to buy a set today")

    assert outcome.route == TurnRoute.TOOL_AUGMENTED
    assert outcome.response == "Which set caught your eye?"


@pytest.mark.anyio
async def test_smalltalk_route_refuses_tool_requests() -> None:
    model = ScriptedModel([SEARCH_LOUNGE])
    harness = AgentHarness(faro_products(), model)

    outcome = await harness.say("s1", "Hi there!")

    assert outcome.route == TurnRoute.PLAIN_MODEL
    assert outcome.response == GREETING_REPLY
    assert harness.store.get("s1").whitelist == []
    assert "TOOLS: none this turn" in model.calls[0]["system"]


@pytest.mark.anyio
async def test_tool_rounds_are_bounded() -> None:
    model = ScriptedModel([SEARCH_LOUNGE, SEARCH_LOUNGE, SEARCH_LOUNGE])
    harness = AgentHarness(faro_products(), model)

    outcome = await harness.say("s1", "looking for a lounge set for 6 people")

    assert len(model.calls) == 3
    assert outcome.fallback_used
    assert "TOOLS: none this turn" in model.calls[-1]["system"]


def _bundle_catalog():
    products = faro_products()
    products[1] = make_product("FARO-COVER", name="Faro Cover", category="Covers", material="Polyester", stock=8)
    return products


@pytest.mark.anyio
async def test_bundle_offer_attaches_to_first_card_once() -> None:
    harness = AgentHarness(
        _bundle_catalog(),
        ScriptedModel(
            [
                SEARCH_LOUNGE,
                {"intent": "product_recommendation", "selected_skus": ["FARO-LOUNGE-SET"]},
                {"intent": "product_recommendation", "selected_skus": ["FARO-LOUNGE-SET"]},
            ]
        ),
    )

    first = await harness.say("s1", "looking for a lounge set for 6 people")
    second = await harness.say("s1", "can you show it again")

    assert first.offer_type == "bundle"
    assert "*Matching cover available - ask about our 20% bundle discount!*" in first.response
    assert "Faro Cover" not in first.response
    assert second.offer_type is None
    assert "bundle discount" not in second.response


@pytest.mark.anyio
async def test_declined_bundle_is_not_offered_again() -> None:
    harness = AgentHarness(
        _bundle_catalog(),
        ScriptedModel(
            [
                SEARCH_LOUNGE,
                {"intent": "product_recommendation", "selected_skus": ["FARO-LOUNGE-SET"]},
                {"intent": "objection_handling", "response_text": "No problem at all."},
            ]
        ),
    )
    await harness.say("s1", "looking for a lounge set for 6 people")

    outcome = await harness.say("s1", "no thanks, just the set")

    assert outcome.response == "No problem at all."
    assert harness.store.get("s1").commercial.tracks["bundle"].declined


@pytest.mark.anyio
async def test_live_price_and_url_are_used_on_cards() -> None:
    harness = AgentHarness(
        faro_products(),
        ScriptedModel([SEARCH_LOUNGE, RECOMMEND_FARO]),
        prices={
            "FARO-LOUNGE-SET": PriceData(
                price=1749.0,
                stock_quantity=3,
                canonical_url="https://www.mint-outdoor.com/products/faro-lounge-set",
            )
        },
    )

    outcome = await harness.say("s1", "looking for a lounge set for 6 people")

    assert "**Price:** £1749.00" in outcome.response
    assert "**Stock:** Only 3 left!" in outcome.response
    assert "(https://www.mint-outdoor.com/products/faro-lounge-set)" in outcome.response


@pytest.mark.anyio
async def test_live_sold_out_refuses_card_after_search() -> None:
    harness = AgentHarness(
        faro_products(),
        ScriptedModel([SEARCH_LOUNGE, RECOMMEND_FARO]),
        prices={"FARO-LOUNGE-SET": PriceData(price=1899.0, stock_quantity=0)},
    )

    outcome = await harness.say("s1", "looking for a lounge set for 6 people")

    session = harness.store.get("s1")
    assert session.whitelist == ["FARO-LOUNGE-SET"]
    assert outcome.approved_skus == []
    assert outcome.response.endswith(UNAVAILABLE_REPLY)
    assert "**Stock:**" not in outcome.response
    assert "Faro 9 Seater" not in outcome.response
    assert session.commercial.products_shown == []
