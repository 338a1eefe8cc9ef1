"""
Stipend reconciliation.

Works out how much of a new cart each (delivery date, company) stipend still
covers once the customer's active orders for the same dates are counted, and
splits an optional discount across whatever is left to pay.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .errors import InvalidDiscountCode
from .schemas import DiscountCode, Order
from .utils import date_to_ms, round_money, to_decimal

logger = logging.getLogger(__name__)

GroupKey = Tuple[int, str]


@dataclass
class DateTotal:
    date: int
    company_id: str
    shift: str
    total: Decimal = Decimal("0")
    items: List[str] = field(default_factory=list)


@dataclass
class PayableGroup:
    date: int
    company_id: str
    shift: str
    amount: Decimal
    items: List[str]


@dataclass
class Reconciliation:
    groups: List[PayableGroup]
    total_payable: Decimal
    discount_amount: Decimal = Decimal("0")
    discount_code: Optional[DiscountCode] = None

    @property
    def has_payable_items(self) -> bool:
        return self.total_payable > self.discount_amount

    @property
    def discount_used(self) -> bool:
        return self.discount_code is not None and self.discount_amount > 0


def group_key(order: Order) -> GroupKey:
    return date_to_ms(order.delivery.date), order.company.id


def get_date_totals(orders: List[Order]) -> Dict[GroupKey, DateTotal]:
    """Sum line totals per (date, company), keeping first-seen order"""
    totals: Dict[GroupKey, DateTotal] = {}
    for order in orders:
        key = group_key(order)
        if key not in totals:
            totals[key] = DateTotal(date=key[0], company_id=key[1], shift=order.company.shift)
        totals[key].total += to_decimal(order.item.total)
        totals[key].items.append(order.item.name)
    return totals


def payable_amount(new_total: Decimal, existing_total: Optional[Decimal], stipend: Decimal) -> Decimal:
    if existing_total is None or existing_total < stipend:
        remaining = stipend - (existing_total or Decimal("0"))
        return max(Decimal("0"), new_total - remaining)
    return new_total


def get_payable_groups(
    lines: List[Order], existing: List[Order], stipend
) -> List[PayableGroup]:
    """Payable amount per (date, company) after the stipend; covered groups drop out"""
    stipend = to_decimal(stipend)
    new_totals = get_date_totals(lines)
    existing_totals = get_date_totals(existing)

    groups = []
    for key, detail in new_totals.items():
        existing_total = existing_totals[key].total if key in existing_totals else None
        amount = payable_amount(detail.total, existing_total, stipend)
        if amount > 0:
            groups.append(
                PayableGroup(
                    date=detail.date,
                    company_id=detail.company_id,
                    shift=detail.shift,
                    amount=amount,
                    items=list(detail.items),
                )
            )
    return groups


def apply_discount(groups: List[PayableGroup], discount_amount: Decimal) -> List[PayableGroup]:
    """Equal split across payable dates; groups the discount fully covers are dropped"""
    if not groups or discount_amount <= 0:
        return groups
    share = discount_amount / len(groups)
    discounted = []
    for group in groups:
        amount = round_money(group.amount - share)
        if amount > 0:
            discounted.append(
                PayableGroup(
                    date=group.date,
                    company_id=group.company_id,
                    shift=group.shift,
                    amount=amount,
                    items=group.items,
                )
            )
    return discounted


async def resolve_discount(store, discount_code_id: Optional[str]) -> Optional[DiscountCode]:
    """The redeemable discount code, if any; unknown ids are an error"""
    if not discount_code_id:
        return None
    discount_code = await store.get_discount_code(discount_code_id)
    if discount_code is None:
        logger.warning(f"Discount code {discount_code_id} not found")
        raise InvalidDiscountCode()
    if not discount_code.is_redeemable:
        logger.warning(f"Discount code {discount_code.code} is no longer redeemable")
        return None
    return discount_code


async def reconcile(
    store,
    lines: List[Order],
    existing: List[Order],
    stipend,
    discount_code_id: Optional[str] = None,
) -> Reconciliation:
    groups = get_payable_groups(lines, existing, stipend)
    total_payable = sum((group.amount for group in groups), Decimal("0"))

    # Discounts only matter when something is left to pay
    if not groups:
        return Reconciliation(groups=groups, total_payable=total_payable)

    discount_code = await resolve_discount(store, discount_code_id)
    if discount_code is None:
        return Reconciliation(groups=groups, total_payable=total_payable)

    discount_amount = to_decimal(discount_code.value)
    return Reconciliation(
        groups=apply_discount(groups, discount_amount),
        total_payable=total_payable,
        discount_amount=discount_amount,
        discount_code=discount_code,
    )
