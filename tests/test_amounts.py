import pytest

from swapwatch.domain.amounts import format_units, parse_units, short_amount


@pytest.mark.parametrize("raw,decimals,text", [
    (10**18, 18, "1.0"),
    (1_500_000, 6, "1.5"),
    (1, 18, "0.000000000000000001"),
    (0, 18, "0.0"),
    (123, 0, "123"),
    (-25, 1, "-2.5"),
])
def test_format_units(raw, decimals, text):
    assert format_units(raw, decimals) == text


@pytest.mark.parametrize("raw,decimals", [(0, 18), (1, 18), (10**30 + 7, 18), (999_999, 6), (42, 0), (5 * 10**8, 9)])
def test_format_parse_round_trip(raw, decimals):
    assert parse_units(format_units(raw, decimals), decimals) == raw


def test_parse_units_rejects_excess_precision_and_garbage():
    with pytest.raises(ValueError):
        parse_units("1.0000001", 6)
    with pytest.raises(ValueError):
        parse_units("abc", 18)


def test_short_amount():
    assert short_amount(1_234_567_891_234_567_891, 18) == "1.234567"
    assert short_amount(10**18, 18) == "1"
    assert short_amount(1_234, 18) == "0.000000000000001234"
    assert short_amount(7, 0) == "7"
