"""Short code generation.

Codes are drawn uniformly at random from the 62-symbol alphanumeric alphabet
with nanoid's secure generator. Uniqueness is not guaranteed here; the link
service retries on a store conflict.
"""

from nanoid import generate

from shortener.config import get_settings

__all__ = ["ALPHABET", "generate_short_code"]

settings = get_settings()

ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"


def generate_short_code(length: int = settings.SHORT_CODE_LENGTH) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)
