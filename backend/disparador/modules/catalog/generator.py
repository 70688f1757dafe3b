# disparador/modules/catalog/generator.py
# Gera mensagens a partir de templates com placeholders e spintax.
#   Placeholders: {titulo} {preco} {precoAntigo} {desconto} {cupom} {link} {loja} {categoria}
#   Spintax: {opção1|opção2|opção3}

import math
import random
import re
from typing import Any, Callable, Dict, List, Mapping, Optional

SPINTAX_RE = re.compile(r"\{([^{}]+)\}")

PLACEHOLDER_FIELDS = {
    "titulo": "title",
    "preco": "price",
    "precoAntigo": "old_price",
    "cupom": "coupon",
    "link": "link",
    "loja": "store",
    "categoria": "category",
}

def seeded_random(seed: int) -> Callable[[], float]:
    """Gerador congruente linear; mesma semente, mesma sequência de variações."""
    state = seed

    def _next() -> float:
        nonlocal state
        state = (state * 9301 + 49297) % 233280
        return state / 233280

    return _next

def placeholder_values(product: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    product = product or {}
    values = {name: str(product.get(field) or "") for name, field in PLACEHOLDER_FIELDS.items()}
    discount = product.get("discount_percent")
    values["desconto"] = f"{discount}%" if discount is not None else ""
    return values

def replace_placeholders(text: str, values: Mapping[str, str]) -> str:
    for key, value in values.items():
        text = re.sub(r"\{" + re.escape(key) + r"\}", lambda _m, v=value: v, text, flags=re.IGNORECASE)
    return text

def resolve_spintax(text: str, rand: Callable[[], float]) -> str:
    def _pick(match: re.Match) -> str:
        variants: List[str] = [v.strip() for v in match.group(1).split("|")]
        return variants[math.floor(rand() * len(variants))]

    return SPINTAX_RE.sub(_pick, text)

def generate_message(template_body: str, product: Optional[Mapping[str, Any]] = None, seed: Optional[int] = None) -> str:
    result = replace_placeholders(template_body, placeholder_values(product))
    rand = seeded_random(seed) if seed is not None else random.random
    return resolve_spintax(result, rand).strip()

DEFAULT_TEMPLATES: List[Dict[str, str]] = [
    {
        "name": "Oferta Relâmpago",
        "template_type": "oferta_relampago",
        "body": (
            "⚡ *OFERTA RELÂMPAGO* ⚡\n\n"
            "{titulo}\n\n"
            "💰 De {precoAntigo} por apenas *{preco}*\n"
            "🔥 {desconto} de desconto!\n\n"
            "{cupom|🎫 Cupom: {cupom}|}\n\n"
            "➡️ {link}\n\n"
            "Não perca! {loja}"
        ),
    },
    {
        "name": "Cupom",
        "template_type": "cupom",
        "body": (
            "🎫 *CUPOM EXCLUSIVO* 🎫\n\n"
            "{titulo}\n\n"
            "✅ Use o cupom: *{cupom}*\n"
            "💰 {preco} {desconto|com {desconto} OFF|}\n\n"
            "🔗 {link}\n"
            "📦 {loja}"
        ),
    },
    {
        "name": "Frete Grátis",
        "template_type": "frete_gratis",
        "body": (
            "🚚 *FRETE GRÁTIS* 🚚\n\n"
            "{titulo}\n\n"
            "✨ Apenas *{preco}*\n"
            "{cupom|🎁 Cupom {cupom}|}\n\n"
            "👉 {link}\n"
            "Loja: {loja}"
        ),
    },
    {
        "name": "Simples",
        "template_type": "custom",
        "body": "{titulo}\n\n{preco} {desconto|{desconto} OFF|}\n{link}",
    },
]
