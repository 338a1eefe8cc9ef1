from decimal import Decimal

import pytest

from factories import DISCOUNT_ID, THURSDAY, WEDNESDAY, make_discount, make_order
from shiftmeal.errors import InvalidDiscountCode
from shiftmeal.stipend import PayableGroup, apply_discount, get_payable_groups, payable_amount, reconcile
from shiftmeal.utils import date_to_ms


def test_cart_within_stipend_has_no_payable_groups():
    assert get_payable_groups([make_order(total=15)], [], 20) == []


def test_existing_orders_use_up_the_stipend():
    groups = get_payable_groups([make_order(total=10)], [make_order(total=15)], 20)

    assert [group.amount for group in groups] == [Decimal("5")]


def test_existing_orders_above_stipend_pay_in_full():
    assert payable_amount(Decimal("10"), Decimal("25"), Decimal("20")) == Decimal("10")
    assert payable_amount(Decimal("10"), Decimal("20"), Decimal("20")) == Decimal("10")


def test_groups_are_per_date():
    lines = [
        make_order(date=WEDNESDAY, total=30),
        make_order(date=THURSDAY, total=25),
        make_order(date=THURSDAY, total=25),
    ]
    groups = get_payable_groups(lines, [make_order(date=THURSDAY, total=5)], 20)

    assert [(group.date, group.amount) for group in groups] == [
        (date_to_ms(WEDNESDAY), Decimal("10")),
        (date_to_ms(THURSDAY), Decimal("35")),
    ]
    assert groups[1].items == ["Burger", "Burger"]


def test_discount_is_split_equally():
    groups = [
        PayableGroup(date=1, company_id="c", shift="day", amount=Decimal("20"), items=[]),
        PayableGroup(date=2, company_id="c", shift="day", amount=Decimal("30"), items=[]),
    ]

    assert [g.amount for g in apply_discount(groups, Decimal("10"))] == [
        Decimal("15.00"),
        Decimal("25.00"),
    ]


def test_fully_discounted_groups_drop_out():
    groups = [
        PayableGroup(date=1, company_id="c", shift="day", amount=Decimal("4"), items=[]),
        PayableGroup(date=2, company_id="c", shift="day", amount=Decimal("30"), items=[]),
    ]

    assert [g.date for g in apply_discount(groups, Decimal("10"))] == [2]


@pytest.mark.anyio
async def test_reconcile_applies_redeemable_discount(store, discount):
    lines = [make_order(date=WEDNESDAY, total=40), make_order(date=THURSDAY, total=50)]

    result = await reconcile(store, lines, [], 20, DISCOUNT_ID)

    assert [g.amount for g in result.groups] == [Decimal("15.00"), Decimal("25.00")]
    assert result.total_payable == Decimal("50")
    assert result.discount_used
    assert result.has_payable_items


@pytest.mark.anyio
async def test_reconcile_ignores_spent_discount(store):
    store.add_discount(make_discount(total_redeem=1))

    result = await reconcile(store, [make_order(total=30)], [], 20, DISCOUNT_ID)

    assert result.discount_amount == Decimal("0")
    assert not result.discount_used
    assert [g.amount for g in result.groups] == [Decimal("10")]


@pytest.mark.anyio
async def test_reconcile_rejects_unknown_discount(store):
    with pytest.raises(InvalidDiscountCode):
        await reconcile(store, [make_order(total=30)], [], 20, DISCOUNT_ID)


@pytest.mark.anyio
async def test_discount_not_looked_up_when_stipend_covers_cart(store):
    # Unknown code, but nothing to pay so it's never checked
    result = await reconcile(store, [make_order(total=10)], [], 20, DISCOUNT_ID)

    assert result.groups == []
    assert not result.has_payable_items
