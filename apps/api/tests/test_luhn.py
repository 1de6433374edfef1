import pytest

from loyaltymart_api.services.orders.luhn import validate_luhn


@pytest.mark.parametrize(
    "number",
    ["79927398713", "4561261212345467", "0", "18", "12345678903"],
)
def test_valid_numbers_pass(number):
    assert validate_luhn(number) is True


def test_single_digit_change_fails():
    assert validate_luhn("79927398713")
    assert not validate_luhn("79927398710")
    assert not validate_luhn("79927398714")
    assert not validate_luhn("89927398713")


@pytest.mark.parametrize("number", ["", " ", "7992 7398 713", "7992739871a", "-79927398713", "٧٩٩"])
def test_non_digit_input_fails(number):
    assert validate_luhn(number) is False
