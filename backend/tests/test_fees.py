"""Сервисный сбор платформы."""
from decimal import Decimal

from foodcourt.services.fees import calculate_fees


def test_flat_fee_for_small_orders():
    fees = calculate_fees(Decimal("40"))
    assert fees.platform_fee == Decimal("1.50")
    assert fees.total_payable == Decimal("41.50")
    assert fees.gateway_fee == Decimal("0.83")
    assert fees.net_profit == Decimal("0.67")


def test_percent_fee_for_larger_orders():
    fees = calculate_fees(Decimal("100"))
    assert fees.platform_fee == Decimal("3.00")
    assert fees.total_payable == Decimal("103.00")
    assert fees.net_profit == Decimal("0.94")


def test_fee_bumped_to_keep_minimum_net():
    """Чистый доход платформы после комиссии шлюза не меньше 0.50."""
    for amount in ("50", "51", "52.40"):
        fees = calculate_fees(Decimal(amount))
        assert fees.net_profit >= Decimal("0.50"), amount
    fees = calculate_fees(Decimal("51"))
    assert fees.platform_fee == Decimal("1.55")
    assert fees.total_payable == Decimal("52.55")
