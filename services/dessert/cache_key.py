# services/dessert/cache_key.py
"""
Content addressing for generation requests.

Two requests asking for the same ingredients in any order, case or spacing,
with the same theme and language, map to the same key.
"""

import hashlib

KEY_LENGTH = 32


def normalize_ingredients(ingredients: str) -> str:
    """Lower-case, trim, drop empties, sort and rejoin with commas"""
    tokens = [token.strip() for token in ingredients.lower().split(",")]
    return ",".join(sorted(token for token in tokens if token))


def generate_cache_key(ingredients: str, theme: str, language: str) -> str:
    theme = getattr(theme, "value", theme)
    language = getattr(language, "value", language)
    raw = f"{normalize_ingredients(ingredients)}-{theme}-{language}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:KEY_LENGTH]
