from __future__ import annotations

from salesguard.whitelist import WhitelistValidator, validate


def test_hallucinated_sku_is_rejected_and_order_kept() -> None:
    result = validate(["FARO-LOUNGE-SET", "FARO-COVER"], ["FARO-LOUNGE-SET"])
    assert result.approved == ["FARO-LOUNGE-SET"]
    assert result.rejected == ["FARO-COVER"]


def test_empty_whitelist_rejects_everything() -> None:
    result = validate(["A", "B"], [])
    assert result.approved == []
    assert result.rejected == ["A", "B"]


def test_repeats_collapse_and_non_strings_are_rejected() -> None:
    result = validate(["B", " A ", "B", 7, None, "a"], ["A", "B"])
    assert result.approved == ["B", "A"]
    assert result.rejected == ["7", "None", "a"]


def test_validator_counts_rejections(caplog) -> None:
    validator = WhitelistValidator()
    validator.check("s1", ["X", "Y"], ["A"])
    validator.check("s1", ["A"], ["A"])

    assert validator.rejected_total == 2
    assert "whitelist blocked session=s1 sku='X'" in caplog.text
