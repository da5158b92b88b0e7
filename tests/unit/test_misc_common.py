import pytest

from price_harvest.common.errors import ConfigError, FetchError
from price_harvest.common.ids import generate_session_id
from price_harvest.common.time_utils import parse_period


def test_parse_period_normalises_to_first_of_month():
    assert parse_period("2026-03") == "2026-03-01"
    assert parse_period("2026-03-17") == "2026-03-01"
    assert parse_period(None).endswith("-01")


@pytest.mark.parametrize("value", ["2026-13", "March", "2026/03", "2026-02-30"])
def test_parse_period_rejects_malformed_values(value):
    with pytest.raises(ConfigError):
        parse_period(value)


def test_generate_session_id_prefix():
    assert generate_session_id("2026-03-01").startswith("session-2026-03-")


def test_fetch_error_kinds():
    assert FetchError("timeout", "slow").retryable is True
    assert FetchError("not_found", "gone").retryable is False
    assert FetchError("weird", "?").kind == "unknown"
