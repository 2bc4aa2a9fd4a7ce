# sheetmerge/codec.py
"""
Cell value helpers shared by the readers, writers and the merge engine.

Values travel through the whole package as plain strings. Numbers use the
decimal comma when they are displayed ("12,500") and either separator is
accepted when classifying.
"""
from enum import Enum
from typing import Optional

LEGACY_ENCODING = "cp1252"
DECIMAL_PLACES = 3
DECIMAL_SEPARATOR = ","


class ValueKind(Enum):
    INTEGER = "integer"
    DECIMAL = "decimal"
    TEXT = "text"


def _split_sign(text: str) -> str:
    if text[:1] in ("+", "-"):
        return text[1:]
    return text


def classify(text: Optional[str]) -> ValueKind:
    """
    Integer: optional sign followed by ASCII digits only.
    Decimal: optional sign, ASCII digits and exactly one '.' or ','.
    Everything else (including the empty string) is Text.
    """
    if not text:
        return ValueKind.TEXT
    body = _split_sign(text)
    separators = 0
    digits = 0
    for ch in body:
        if "0" <= ch <= "9":
            digits += 1
        elif ch in ".,":
            separators += 1
            if separators > 1:
                return ValueKind.TEXT
        else:
            return ValueKind.TEXT
    if digits == 0:
        return ValueKind.TEXT
    if separators == 1:
        return ValueKind.DECIMAL
    return ValueKind.INTEGER


def is_integer(text: Optional[str]) -> bool:
    return classify(text) is ValueKind.INTEGER


def is_number(text: Optional[str]) -> bool:
    return classify(text) is not ValueKind.TEXT


def parse_decimal(text: str) -> Optional[float]:
    """Parse a locale decimal ("12,5" or "12.5"). Returns None for non-numbers."""
    if not is_number(text):
        return None
    try:
        return float(text.replace(",", "."))
    except ValueError:
        return None


def to_display_decimal(number: float) -> str:
    return f"{number:.{DECIMAL_PLACES}f}".replace(".", DECIMAL_SEPARATOR)


def _cdiv(a: int, b: int) -> int:
    # integer division truncating toward zero
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b >= 0) else -q


def serial_to_date(serial: int) -> str:
    """
    Convert a 1900-epoch spreadsheet day count to "dd.mm.yyyy".

    Fliegel/Van Flandern julian-day arithmetic on the 1900 serial, kept
    exactly as spreadsheets compute it, so serial 60 is not special-cased.
    """
    l = serial + 68569 + 2415019
    n = _cdiv(4 * l, 146097)
    l = l - _cdiv(146097 * n + 3, 4)
    i = _cdiv(4000 * (l + 1), 1461001)
    l = l - _cdiv(1461 * i, 4) + 31
    j = _cdiv(80 * l, 2447)
    day = l - _cdiv(2447 * j, 80)
    l = _cdiv(j, 11)
    month = j + 2 - 12 * l
    year = 100 * (n - 49) + i + l
    return f"{day:02d}.{month:02d}.{year}"


def legacy_to_utf8(data: bytes) -> str:
    return data.decode(LEGACY_ENCODING, errors="replace")


def utf8_to_legacy(text: str) -> bytes:
    return text.encode(LEGACY_ENCODING, errors="replace")


def sanitize_text(text: str) -> str:
    """Replace anything that is not encodable as UTF-8 (lone surrogates)."""
    return text.encode("utf-8", errors="replace").decode("utf-8")
