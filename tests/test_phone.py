import pytest

from leadsync.core.phone import format_phone_number


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("(555) 123-4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+44 20 7946 0958", "+44 20 7946 0958"),
        ("12345", "+112345"),
        ("", ""),
        (None, ""),
    ],
)
def test_format_phone_number(raw, expected):
    assert format_phone_number(raw) == expected


def test_ten_digits_wins_over_plus_prefix():
    # digit-count rules are checked before the "+" passthrough
    assert format_phone_number("+555 123 4567") == "+15551234567"
