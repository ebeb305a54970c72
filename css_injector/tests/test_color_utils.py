from __future__ import annotations

import pytest

from css_injector.color_utils import (
    DEFAULT_BACKGROUND_COLOR,
    InvalidColorError,
    coerce_color,
    css_color,
    is_valid_hex_color,
    normalize_argb,
    parse_hex_color,
)


@pytest.mark.parametrize(
    "value",
    ["#FFFFFF", "102030", "#80112233", "  #abcdef  ", "DEADBEEF"],
)
def test_accepts_six_and_eight_digit_hex(value: str) -> None:
    assert is_valid_hex_color(value) is True


@pytest.mark.parametrize(
    "value",
    [None, "", "#FFF", "#12345G", "blue", "#1234567", 0xFFFFFF, "##FFFFFF"],
)
def test_rejects_other_values(value) -> None:
    assert is_valid_hex_color(value) is False


def test_six_digit_colors_become_opaque_argb() -> None:
    assert normalize_argb("#abcdef") == "#FFABCDEF"
    assert normalize_argb("80112233") == "#80112233"


def test_normalize_argb_raises_for_invalid_input() -> None:
    with pytest.raises(InvalidColorError):
        normalize_argb("red")


def test_css_color_moves_alpha_last() -> None:
    assert css_color("#80112233") == "#11223380"
    assert css_color("#112233") == "#112233"
    assert css_color("#ff112233") == "#112233"


def test_parse_hex_color_reads_alpha_first() -> None:
    color = parse_hex_color("#80112233")
    assert color.alpha() == 0x80
    assert (color.red(), color.green(), color.blue()) == (0x11, 0x22, 0x33)

    opaque = parse_hex_color("#102030")
    assert opaque.alpha() == 255


def test_coerce_color_falls_back_for_invalid_values() -> None:
    assert coerce_color(" #102030 ") == "#102030"
    assert coerce_color("nope") == DEFAULT_BACKGROUND_COLOR
    assert coerce_color(None, fallback="#000000") == "#000000"
