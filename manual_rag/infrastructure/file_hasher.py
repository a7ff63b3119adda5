# manual_rag/infrastructure/file_hasher.py

import hashlib


_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def text_digest(text: str) -> str:
    """
    SHA-256 of the UTF-8 encoded text.
    Used for content-addressed embedding cache keys.
    """
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def rolling_hash(text: str) -> str:
    """
    Cheap 32-bit rolling hash (h = h * 31 + code point), absolute value in base 36.
    Not collision resistant; only used as a duplicate-upload heuristic.
    """
    h = 0
    for char in text:
        h = (h * 31 + ord(char)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return _to_base36(abs(h))


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))
