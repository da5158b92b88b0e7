import pytest

from price_harvest.common.location import is_valid_location_id, normalise_city_name, normalise_location_id


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("01067", "01067"),
        ("1067", "01067"),
        (1067, "01067"),
        ("1067.0", "01067"),
        (" 20095 ", "20095"),
        ("abc", None),
        ("123456", None),
        ("00000", None),
        ("", None),
        (None, None),
    ],
)
def test_normalise_location_id(raw, expected):
    assert normalise_location_id(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("Frankfurt am Main, Stadt", "frankfurt-am-main"),
        ("München", "muenchen"),
        ("Weißenfels", "weissenfels"),
        ("Halle (Saale)", "halle-saale"),
        ("Köln--Porz", "koeln-porz"),
        ("", ""),
        (None, ""),
    ],
)
def test_normalise_city_name(raw, expected):
    assert normalise_city_name(raw) == expected


def test_is_valid_location_id():
    assert is_valid_location_id("10115")
    assert not is_valid_location_id("1011")
