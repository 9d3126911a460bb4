import pytest

from app.core.json_repair import (
    parse_lenient_json,
    parse_nutrition_json,
    quote_unit_values,
    remove_trailing_commas,
    strip_code_fence,
)


def test_valid_json_is_returned_unchanged() -> None:
    assert parse_lenient_json('{"foods": [{"foodName": "egg", "calories": 78}]}') == {
        "foods": [{"foodName": "egg", "calories": 78}]
    }


def test_code_fence_is_stripped() -> None:
    text = '```json\n{"foods": []}\n```'
    assert strip_code_fence(text) == '{"foods": []}'
    assert parse_lenient_json(text) == {"foods": []}


def test_prose_around_object_is_ignored() -> None:
    text = 'Sure, here you go: {"foods": [{"foodName": "apple"}]} Let me know if you need more.'
    assert parse_lenient_json(text) == {"foods": [{"foodName": "apple"}]}


def test_trailing_commas_are_removed() -> None:
    assert remove_trailing_commas('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'
    assert parse_lenient_json('{"foods": [{"foodName": "pear",},],}') == {"foods": [{"foodName": "pear"}]}


def test_unquoted_unit_values_are_quoted() -> None:
    repaired = quote_unit_values('{"calories": 200kcal, "protein": 20g, "sodium": 300mg, "fat": 4.5}')
    assert '"calories": "200kcal"' in repaired
    assert '"protein": "20g"' in repaired
    assert '"sodium": "300mg"' in repaired
    assert '"fat": 4.5' in repaired


def test_unquoted_serving_size_is_quoted() -> None:
    parsed = parse_lenient_json('{"foods": [{"foodName": "rice", "servingSize": 1 bowl, "calories": 200}]}')
    assert parsed == {"foods": [{"foodName": "rice", "servingSize": "1 bowl", "calories": 200}]}


def test_chinese_unit_values_are_quoted() -> None:
    parsed = parse_lenient_json('{"foodName": "rice", "servingSize": 1碗, "calories": 200千卡}')
    assert parsed["servingSize"] == "1碗"
    assert parsed["calories"] == "200千卡"


def test_single_quoted_values_are_converted() -> None:
    parsed = parse_lenient_json("{\"foodName\": 'toast', \"description\": 'buttered'}")
    assert parsed == {"foodName": "toast", "description": "buttered"}


def test_unrecoverable_text_returns_default() -> None:
    assert parse_lenient_json("not json at all") is None
    assert parse_lenient_json("not json at all", default={"foods": []}) == {"foods": []}
    assert parse_lenient_json(None, default=[]) == []


def test_nutrition_parse_falls_back_to_empty_foods() -> None:
    assert parse_nutrition_json("I cannot see any food here.") == {"foods": []}
    assert parse_nutrition_json("[1, 2, 3]") == {"foods": []}


def test_fixture_with_units_and_fence(fixture_dir) -> None:
    parsed = parse_nutrition_json((fixture_dir / "FOODS_UNITS.txt").read_text(encoding="utf-8"))
    food = parsed["foods"][0]
    assert food["foodName"] == "Steamed rice"
    assert food["servingSize"] == "1 bowl"
    assert food["calories"] == "200kcal"
    assert food["sodium"] == "5mg"


ADVERSARIAL_TEXTS = [
    "[" * 100000,
    "{" * 100000,
    '{"a":' * 50000,
    "[" * 100000 + "]" * 100000,
    "{",
    "}",
    "}{",
    "",
    "   ",
    "```",
    "```json\n```",
    '{"foods": [' + "1" * 5000 + "]}",
    '{"calories": ' + "9" * 5000 + "}",
    '"\\ud800"',
    '{"foodName": "\\udfff"',
    "\ud800{\"foods\": []",
    "{'foods': [}",
    '{"calories": 20g,,,}',
    '{"servingSize": 1 "cup"}',
    ",}" * 1000,
]


@pytest.mark.parametrize("text", ADVERSARIAL_TEXTS, ids=[f"text{i}" for i in range(len(ADVERSARIAL_TEXTS))])
def test_adversarial_text_never_raises(text) -> None:
    sentinel = object()
    result = parse_lenient_json(text, default=sentinel)
    assert result is sentinel or isinstance(result, (dict, list, str, int, float))
    assert isinstance(parse_nutrition_json(text), dict)


def test_deep_nesting_falls_back_to_empty_foods() -> None:
    assert parse_nutrition_json("[" * 100000) == {"foods": []}
    assert parse_lenient_json("{" * 100000, default={"foods": []}) == {"foods": []}


def test_non_finite_literals_parse_without_error() -> None:
    parsed = parse_nutrition_json('{"foods": [{"foodName": "x", "calories": NaN, "fat": Infinity}]}')
    assert parsed["foods"][0]["foodName"] == "x"
