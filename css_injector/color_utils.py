"""Hex color validation and conversion for native and CSS backgrounds."""
from __future__ import annotations

from typing import Any, Optional

from PyQt6.QtGui import QColor

_HEX_DIGITS = set("0123456789ABCDEFabcdef")
OPAQUE_ALPHA = "FF"
DEFAULT_BACKGROUND_COLOR = "#FFFFFF"


class InvalidColorError(ValueError):
    """Raised when a color string is not 6 or 8 hex digits."""


def _hex_body(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    token = value.strip()
    if token.startswith("#"):
        token = token[1:]
    if len(token) not in (6, 8):
        return None
    if not all(ch in _HEX_DIGITS for ch in token):
        return None
    return token


def is_valid_hex_color(value: Any) -> bool:
    return _hex_body(value) is not None


def normalize_argb(value: Any) -> str:
    """Return ``#AARRGGBB`` (upper case) for a 6 or 8 digit color.

    Six digit values are treated as fully opaque. Eight digit values are read
    in the platform (Qt) order, alpha first.
    """

    body = _hex_body(value)
    if body is None:
        raise InvalidColorError(f"Invalid color: {value!r}")
    if len(body) == 6:
        body = OPAQUE_ALPHA + body
    return "#" + body.upper()


def parse_hex_color(value: Any) -> QColor:
    color = QColor(normalize_argb(value))
    if not color.isValid():
        raise InvalidColorError(f"Invalid color: {value!r}")
    return color


def css_color(value: Any) -> str:
    """Render a validated color for CSS, which orders alpha last."""

    argb = normalize_argb(value)
    alpha, rgb = argb[1:3], argb[3:]
    if alpha == OPAQUE_ALPHA:
        return "#" + rgb
    return "#" + rgb + alpha


def coerce_color(value: Any, fallback: str = DEFAULT_BACKGROUND_COLOR) -> str:
    """Return ``value`` stripped when valid, otherwise ``fallback``."""

    if is_valid_hex_color(value):
        return str(value).strip()
    return fallback
