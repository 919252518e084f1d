import pytest

from services.dessert.ingredient_validator import (
    MSG_BLOCKED,
    MSG_REQUIRED,
    MSG_TOO_SHORT,
    POPULAR_INGREDIENTS,
    get_suggestions,
    validate_ingredients,
)


@pytest.mark.parametrize("value", ["", None, 42])
def test_missing_ingredients(value):
    result = validate_ingredients(value)
    assert not result.valid
    assert result.message == MSG_REQUIRED
    assert not result.blocked


def test_too_short():
    result = validate_ingredients("  ab ")
    assert not result.valid
    assert result.message == MSG_TOO_SHORT


def test_too_long():
    result = validate_ingredients("a" * 501)
    assert not result.valid
    assert "500" in result.message


def test_custom_max_length():
    assert not validate_ingredients("banana, mel", max_length=5).valid


def test_only_separators_is_invalid():
    result = validate_ingredients(",,;;,")
    assert not result.valid
    assert result.message == MSG_TOO_SHORT


@pytest.mark.parametrize("ingredients", ["glue, sugar", "Cola branca; leite", "chocolate, METAL"])
def test_blocked_terms_rejected(ingredients):
    result = validate_ingredients(ingredients)
    assert not result.valid
    assert result.blocked
    assert result.message == MSG_BLOCKED


@pytest.mark.parametrize("ingredients", ["chocolate", "coca colada", "glassy glaze", "metallic sprinkles"])
def test_blocked_terms_only_match_whole_words(ingredients):
    result = validate_ingredients(ingredients)
    assert result.valid, ingredients


def test_accented_blocked_term():
    result = validate_ingredients("açúcar, álcool")
    assert result.blocked


def test_custom_blocked_terms():
    assert validate_ingredients("broccoli, sugar", blocked_terms=["broccoli"]).blocked
    assert validate_ingredients("glue, sugar", blocked_terms=[]).valid


def test_valid_ingredients_split_on_commas_and_semicolons():
    result = validate_ingredients("Morango, chocolate; leite condensado")
    assert result.valid
    assert result.ingredients == ["morango", "chocolate", "leite condensado"]
    assert result.has_known_ingredient


def test_unknown_ingredients_still_valid():
    result = validate_ingredients("dragonfruit, yuzu")
    assert result.valid
    assert not result.has_known_ingredient


def test_suggestions_by_category():
    assert get_suggestions("fruits") == [
        "morango", "banana", "maçã", "laranja", "limão", "abacaxi", "manga", "uva"
    ]
    assert all("chocolate" in i or "cacau" in i for i in get_suggestions("chocolate"))
    assert "manteiga" in get_suggestions("dairy")


def test_suggestions_default_to_first_twenty():
    assert get_suggestions() == POPULAR_INGREDIENTS[:20]
    assert get_suggestions("unknown") == POPULAR_INGREDIENTS[:20]
