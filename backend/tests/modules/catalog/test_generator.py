# tests/modules/catalog/test_generator.py
from disparador.modules.catalog.generator import (
    DEFAULT_TEMPLATES, generate_message, placeholder_values, replace_placeholders, resolve_spintax, seeded_random,
)

PRODUCT = {
    "title": "Tênis Corrida",
    "price": "R$ 199,90",
    "old_price": "R$ 299,90",
    "discount_percent": 33,
    "coupon": "CORRE10",
    "link": "https://loja.example.com/tenis",
    "store": "Loja Teste",
    "category": "Esportes",
}

def test_placeholders_are_replaced_case_insensitively():
    values = placeholder_values(PRODUCT)
    text = replace_placeholders("{TITULO} de {precoAntigo} por {preco} ({desconto})", values)
    assert text == "Tênis Corrida de R$ 299,90 por R$ 199,90 (33%)"

def test_missing_product_fields_become_empty():
    values = placeholder_values({"title": "Caneca"})
    assert values["titulo"] == "Caneca"
    assert values["cupom"] == ""
    assert values["desconto"] == ""

def test_seeded_random_is_deterministic():
    first, second = seeded_random(42), seeded_random(42)
    assert [first() for _ in range(5)] == [second() for _ in range(5)]

def test_spintax_picks_one_variant():
    # Semente 1: primeiro valor 58598/233280 ~ 0.25, primeira de três opções
    assert resolve_spintax("{Olá|Oi|E aí}, tudo bem?", seeded_random(1)) == "Olá, tudo bem?"

def test_generate_message_same_seed_same_output():
    body = "{Oferta|Promoção|Achado} do dia: {titulo} por {preco}"
    first = generate_message(body, PRODUCT, seed=7)
    assert first == generate_message(body, PRODUCT, seed=7)
    assert first.endswith("do dia: Tênis Corrida por R$ 199,90")

def test_builtin_templates_render_without_leftover_braces():
    for template in DEFAULT_TEMPLATES:
        message = generate_message(template["body"], PRODUCT, seed=3)
        assert "{" not in message and "}" not in message
        assert "Tênis Corrida" in message
