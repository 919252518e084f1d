from services.dessert.cache_key import generate_cache_key, normalize_ingredients


def test_normalize_sorts_trims_and_lowercases():
    assert normalize_ingredients(" Morango, chocolate ,LEITE") == "chocolate,leite,morango"


def test_normalize_drops_empty_tokens():
    assert normalize_ingredients("banana,, ,mel,") == "banana,mel"


def test_key_is_order_and_whitespace_insensitive():
    a = generate_cache_key("morango, chocolate, leite", "feminine", "pt")
    b = generate_cache_key("leite,CHOCOLATE ,  morango", "feminine", "pt")
    assert a == b


def test_key_is_32_hex_chars():
    key = generate_cache_key("banana", "masculine", "en")
    assert len(key) == 32
    assert all(c in "0123456789abcdef" for c in key)


def test_key_depends_on_theme_and_language():
    base = generate_cache_key("banana, mel", "feminine", "pt")
    assert base != generate_cache_key("banana, mel", "masculine", "pt")
    assert base != generate_cache_key("banana, mel", "feminine", "en")


def test_key_accepts_enum_values():
    from services.dessert.models import Language, Theme

    assert generate_cache_key("banana", Theme.FEMININE, Language.PT) == generate_cache_key(
        "banana", "feminine", "pt"
    )


def test_known_digest():
    import hashlib

    expected = hashlib.sha256(b"chocolate,morango-feminine-pt").hexdigest()[:32]
    assert generate_cache_key("morango, chocolate", "feminine", "pt") == expected
