"""
Сервисный сбор платформы.
Шлюз берёт 2% с суммы к оплате; платформе должно оставаться не меньше 0.50.
До 50 включительно — фиксированно 1.50, дороже — 3% от суммы заказа.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

FLAT_FEE = Decimal("1.50")
FLAT_FEE_THRESHOLD = Decimal("50")
PERCENT_FEE = Decimal("0.03")
GATEWAY_RATE = Decimal("0.02")
MIN_NET_PROFIT = Decimal("0.50")

_CENT = Decimal("0.01")


def _round(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FeeBreakdown:
    order_amount: Decimal
    platform_fee: Decimal
    gateway_fee: Decimal
    net_profit: Decimal
    total_payable: Decimal


def calculate_fees(order_amount: Decimal) -> FeeBreakdown:
    amount = Decimal(order_amount)
    if amount <= FLAT_FEE_THRESHOLD:
        fee = FLAT_FEE
    else:
        fee = _round(amount * PERCENT_FEE)

    total = _round(amount + fee)
    gateway_fee = _round(total * GATEWAY_RATE)
    net = _round(fee - gateway_fee)

    if net < MIN_NET_PROFIT:
        # fee - 0.02 * (amount + fee) >= 0.50
        fee = max(fee, _round((MIN_NET_PROFIT + GATEWAY_RATE * amount) / (1 - GATEWAY_RATE)))
        total = _round(amount + fee)
        gateway_fee = _round(total * GATEWAY_RATE)
        net = _round(fee - gateway_fee)

    return FeeBreakdown(
        order_amount=_round(amount),
        platform_fee=fee,
        gateway_fee=gateway_fee,
        net_profit=net,
        total_payable=total,
    )
