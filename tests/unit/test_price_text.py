import pytest

from price_harvest.extraction.price_text import (
    detect_unit,
    find_price_expression,
    keyword_price_pattern,
    page_text,
    to_euro,
)


def test_cent_expression_with_comma_decimal():
    candidate = find_price_expression("38,00 Cent pro kWh")
    assert candidate is not None
    assert candidate.unit == "cent"
    assert candidate.value == pytest.approx(0.38)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("0,3812 €/kWh", 0.3812),
        ("32 ct/kWh", 0.32),
        ("29.9 ct. je kWh", 0.299),
        ("0.41 Euro pro kWh", 0.41),
    ],
)
def test_price_expression_variants(text, expected):
    assert find_price_expression(text).value == pytest.approx(expected)


def test_unitless_values_above_ten_are_read_as_cents():
    assert find_price_expression("38,5 pro kWh").value == pytest.approx(0.385)
    assert find_price_expression("0,29 pro kWh").value == pytest.approx(0.29)


def test_annual_and_monthly_amounts_are_not_price_expressions():
    assert find_price_expression("1030 € pro Jahr") is None
    assert find_price_expression("12,50 € pro Monat") is None
    assert find_price_expression("Verbrauch 2500 kWh") is None


def test_detect_unit_and_to_euro():
    assert detect_unit("EUR") == "euro"
    assert detect_unit("ct") == "cent"
    assert detect_unit(None) is None
    assert to_euro(41.2, "cent") == pytest.approx(0.412)
    assert to_euro(0.41234567, "euro") == 0.4123


def test_page_text_drops_scripts_and_collapses_whitespace():
    html = "<html><head><script>var x = 1;</script></head><body><p>Grund\n\n  versorger</p><p>Preis</p></body></html>"
    assert page_text(html) == "Grund versorger Preis"


def test_keyword_pattern_respects_window():
    pattern = keyword_price_pattern(("grundversorger",), window=20)
    near = "Grundversorger: 38,00 Cent pro kWh"
    far = "Grundversorger " + "x" * 40 + " 38,00 Cent pro kWh"
    assert pattern.search(near) is not None
    assert pattern.search(far) is None
