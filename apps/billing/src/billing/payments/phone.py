"""Tanzanian mobile number normalisation.

Accepted inputs are the local (``0712345678``), international
(``+255712345678``) and bare (``255712345678``) forms, optionally with
spaces, dashes or parentheses. Every accepted number is normalised to the
12 digit ``255`` form whose first subscriber digit is ``6`` or ``7``.
"""

from __future__ import annotations

import re

from .exceptions import InvalidPhoneNumberError

__all__ = ["format_phone_number_display", "is_valid_phone_number", "normalize_phone_number"]

COUNTRY_CODE = "255"

_SEPARATORS = re.compile(r"[\s\-()]")
_NORMALISED = re.compile(r"^255[67][0-9]{8}$")


def normalize_phone_number(raw: str) -> str:
    """Return the ``255XXXXXXXXX`` form of ``raw`` or raise ``InvalidPhoneNumberError``."""

    if not isinstance(raw, str):
        raise InvalidPhoneNumberError(str(raw))

    cleaned = _SEPARATORS.sub("", raw)
    if cleaned.startswith("+"):
        cleaned = cleaned[1:]
        if not cleaned.startswith(COUNTRY_CODE):
            raise InvalidPhoneNumberError(raw)
    elif cleaned.startswith("0") and len(cleaned) == 10:
        cleaned = COUNTRY_CODE + cleaned[1:]

    if not _NORMALISED.fullmatch(cleaned):
        raise InvalidPhoneNumberError(raw)
    return cleaned


def is_valid_phone_number(raw: str) -> bool:
    try:
        normalize_phone_number(raw)
    except InvalidPhoneNumberError:
        return False
    return True


def format_phone_number_display(phone_number: str) -> str:
    """Render a number the way customers write it, e.g. ``0712 345 678``."""

    local = "0" + normalize_phone_number(phone_number)[len(COUNTRY_CODE) :]
    return f"{local[:4]} {local[4:7]} {local[7:]}"
