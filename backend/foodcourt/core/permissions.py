"""
Кто чем управляет: администратор — всеми точками, владелец точки — только своими,
покупатель — только своими заказами и уведомлениями.
"""
from typing import Optional

from foodcourt.models import Account, AccountRole, Order, Vendor


def _parse_role(role: str) -> Optional[AccountRole]:
    try:
        return AccountRole(role)
    except ValueError:
        return None


def is_admin(role: str) -> bool:
    return _parse_role(role) == AccountRole.ROLE_ADMIN


def can_manage_vendor(role: str, account_id: int, vendor: Vendor) -> bool:
    """Управление заказами, складом и настройками точки."""
    r = _parse_role(role)
    if r == AccountRole.ROLE_ADMIN:
        return True
    return r == AccountRole.ROLE_VENDOR and vendor.owner_id == account_id


def can_view_order(role: str, account_id: int, order: Order, vendor: Vendor) -> bool:
    if order.customer_id == account_id:
        return True
    return can_manage_vendor(role, account_id, vendor)


def can_see_qr(account_id: int, order: Order) -> bool:
    """QR-токен видит только покупатель: у точки он появляется лишь при сканировании."""
    return order.customer_id == account_id


def is_customer(account: Account) -> bool:
    return account.role == AccountRole.ROLE_STUDENT
