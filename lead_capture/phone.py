"""Helpers for the `(XXX) XXX-XXXX` phone display format."""

import re

PHONE_DISPLAY_PATTERN = re.compile(r"^\(\d{3}\) \d{3}-\d{4}$")
_NON_DIGITS = re.compile(r"\D")


def phone_digits(value: str | None) -> str:
    """Strip everything but digits."""

    return _NON_DIGITS.sub("", value or "")


def format_phone_number(value: str | None) -> str:
    """Format raw input as it is typed; partial prefixes stay partial.

    Input beyond ten digits is dropped, so applying the function to its own
    output returns the same string.
    """

    digits = phone_digits(value)
    if len(digits) < 4:
        return digits
    if len(digits) < 7:
        return f"({digits[:3]}) {digits[3:]}"
    return f"({digits[:3]}) {digits[3:6]}-{digits[6:10]}"


def is_phone_format_valid(value: str | None) -> bool:
    return bool(value) and PHONE_DISPLAY_PATTERN.match(value) is not None
