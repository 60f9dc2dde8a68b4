from __future__ import annotations

import re
import secrets
import unicodedata

SUFFIX_BYTES = 3  # six hex chars
MAX_BASE_LENGTH = 200


def slugify(raw: str) -> str:
    """'Café de São Paulo para Curitiba' -> 'cafe-de-sao-paulo-para-curitiba'."""
    ascii_text = unicodedata.normalize("NFKD", raw or "").encode("ascii", "ignore").decode("ascii")
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_text.lower()).strip("-")
    return slug[:MAX_BASE_LENGTH].rstrip("-")


def freight_slug_base(product: str, origin_city: str, dest_city: str) -> str:
    return slugify(f"{product} de {origin_city} para {dest_city}") or "frete"


def random_suffix() -> str:
    return secrets.token_hex(SUFFIX_BYTES)


def with_suffix(base: str) -> str:
    return f"{base}-{random_suffix()}"
