import pytest
from services.refund_policy import calculate_refund_amount, refund_percent


@pytest.mark.parametrize("hours,expected", [
    (48, 10000),
    (24.01, 10000),
    (24, 5000),
    (18, 5000),
    (12, 2500),
    (8, 2500),
    (6, 0),
    (3, 0),
    (-1, 0),
])
def test_refund_decays_with_time_to_appointment(hours, expected):
    assert calculate_refund_amount(10000, hours) == expected


def test_refund_is_floored_to_minor_units():
    # 25% of 333 paise is 83.25
    assert calculate_refund_amount(333, 8) == 83


def test_refund_percent_boundaries():
    assert refund_percent(24.5) == 100
    assert refund_percent(12.5) == 50
    assert refund_percent(6.5) == 25
    assert refund_percent(6) == 0


def test_nothing_to_refund_for_empty_payment():
    assert calculate_refund_amount(0, 48) == 0
