# services/dessert/ingredient_validator.py
import re
from typing import Iterable, Optional

from services.dessert.config import MAX_INGREDIENTS_LENGTH
from services.dessert.models import IngredientValidation

# Non-food terms, Portuguese and English
BLOCKED_TERMS = [
    "veneno", "poison",
    "sabão", "soap",
    "detergente", "detergent",
    "álcool", "alcohol",
    "gasolina", "gasoline",
    "tinta", "paint",
    "cola", "glue",
    "plástico", "plastic",
    "metal",
    "vidro", "glass",
]

POPULAR_INGREDIENTS = [
    # Fruits
    "morango", "banana", "maçã", "laranja", "limão", "abacaxi", "manga",
    "uva", "pêssego", "framboesa", "mirtilo", "kiwi", "melancia",
    "strawberry", "apple", "orange", "lemon", "pineapple", "mango",
    # Chocolate
    "chocolate", "chocolate branco", "chocolate ao leite", "chocolate amargo",
    "cacau", "nutella", "creme de avelã",
    "white chocolate", "milk chocolate", "dark chocolate", "cocoa",
    # Dairy
    "leite", "leite condensado", "creme de leite", "manteiga", "queijo",
    "cream cheese", "iogurte", "chantilly", "sorvete",
    "milk", "condensed milk", "cream", "butter", "cheese", "yogurt", "ice cream",
    # Pantry
    "açúcar", "mel", "farinha", "ovos", "baunilha", "canela", "caramelo",
    "biscoito", "bolacha", "granulado", "confete", "marshmallow", "cookie",
    "sugar", "honey", "flour", "eggs", "vanilla", "cinnamon", "caramel",
    "sprinkles", "cookies",
]

FRUITS = {"morango", "banana", "maçã", "laranja", "limão", "abacaxi", "manga", "uva"}
DAIRY_MARKERS = ("leite", "manteiga", "creme", "iogurte", "sorvete")

MIN_LENGTH = 3

MSG_REQUIRED = "Ingredients are required"
MSG_TOO_SHORT = "Enter at least one ingredient"
MSG_BLOCKED = (
    "Oops! That ingredient isn't food 😅 "
    "How about something tasty like chocolate, fruit or milk?"
)

_SPLIT_PATTERN = re.compile(r"[,;]")


def _too_long_message(max_length: int) -> str:
    return f"Text too long. Maximum of {max_length} characters."


def _blocked_patterns(terms: Iterable[str]) -> list[re.Pattern]:
    return [re.compile(rf"\b{re.escape(term.lower())}\b", re.IGNORECASE) for term in terms]


_DEFAULT_BLOCKED_PATTERNS = _blocked_patterns(BLOCKED_TERMS)


def split_ingredients(ingredients: str) -> list[str]:
    return [token.strip() for token in _SPLIT_PATTERN.split(ingredients) if token.strip()]


def validate_ingredients(
    ingredients,
    blocked_terms: Optional[Iterable[str]] = None,
    max_length: int = MAX_INGREDIENTS_LENGTH,
) -> IngredientValidation:
    """
    Check user-supplied ingredients before anything is charged or generated.

    A blocked term only matches as a whole word, so "cola" rejects
    "cola branca" but not "chocolate".
    """
    if not ingredients or not isinstance(ingredients, str):
        return IngredientValidation(valid=False, message=MSG_REQUIRED)

    cleaned = ingredients.strip().lower()

    if len(cleaned) < MIN_LENGTH:
        return IngredientValidation(valid=False, message=MSG_TOO_SHORT)

    if len(cleaned) > max_length:
        return IngredientValidation(valid=False, message=_too_long_message(max_length))

    tokens = split_ingredients(cleaned)

    patterns = (
        _DEFAULT_BLOCKED_PATTERNS if blocked_terms is None else _blocked_patterns(blocked_terms)
    )
    for token in tokens:
        if any(pattern.search(token) for pattern in patterns):
            return IngredientValidation(valid=False, blocked=True, message=MSG_BLOCKED)

    if not tokens:
        return IngredientValidation(valid=False, message=MSG_TOO_SHORT)

    has_known = any(
        token in popular or popular in token for token in tokens for popular in POPULAR_INGREDIENTS
    )

    return IngredientValidation(valid=True, ingredients=tokens, has_known_ingredient=has_known)


def get_suggestions(category: str = "all") -> list[str]:
    """Popular ingredients for a category, or the first 20 overall"""
    if category == "fruits":
        return [i for i in POPULAR_INGREDIENTS if i in FRUITS]
    if category == "chocolate":
        return [i for i in POPULAR_INGREDIENTS if "chocolate" in i or "cacau" in i]
    if category == "dairy":
        return [i for i in POPULAR_INGREDIENTS if any(d in i for d in DAIRY_MARKERS)]
    return POPULAR_INGREDIENTS[:20]
