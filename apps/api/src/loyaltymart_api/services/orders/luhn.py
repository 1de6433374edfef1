"""Luhn checksum validation for order numbers."""

from __future__ import annotations


def validate_luhn(number: str) -> bool:
    """Return True when ``number`` is a non-empty digit string passing the Luhn check."""

    if not number or not number.isascii() or not number.isdigit():
        return False

    total = 0
    for position, char in enumerate(reversed(number)):
        digit = ord(char) - ord("0")
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


__all__ = ["validate_luhn"]
