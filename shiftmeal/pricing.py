"""
Line pricing and order line construction.
"""

from datetime import datetime
from decimal import Decimal
from typing import List

from .addons import addon_label
from .schemas import (
    PROCESSING,
    AddonSpec,
    CompanyMembership,
    Delivery,
    Order,
    OrderCompany,
    OrderCustomer,
    OrderItem,
    OrderRestaurant,
    User,
)
from .utils import ms_to_date, round_money, sort_labels, to_decimal
from .validation import ValidatedLine


def create_addons(selections: List[str]) -> List[str]:
    """Labels of client selections, without their price part"""
    return [selection.split("-")[0].strip() for selection in selections]


def get_addons_price(spec: AddonSpec, labels: List[str]) -> Decimal:
    """Sum of the prices of the selected labels; unknown labels add nothing"""
    wanted = {addon_label(label) for label in labels}
    return sum((addon.price for addon in spec.addons if addon.key in wanted), Decimal("0"))


def resolve_line_total(base_price, optional_price, required_price, quantity) -> Decimal:
    """(base + add-ons) * quantity, rounded once"""
    subtotal = to_decimal(base_price) + to_decimal(optional_price) + to_decimal(required_price)
    return round_money(subtotal * quantity)


def price_line(line: ValidatedLine) -> Decimal:
    optional_labels = create_addons(line.payload.optional_addons)
    required_labels = create_addons(line.payload.required_addons)
    return resolve_line_total(
        line.item.price,
        get_addons_price(line.item.optional_addons, optional_labels),
        get_addons_price(line.item.required_addons, required_labels),
        line.payload.quantity,
    )


def build_order_line(
    line: ValidatedLine,
    customer: User,
    company: CompanyMembership,
    now: datetime,
) -> Order:
    """Snapshot everything an order needs; later catalog edits don't touch it"""
    payload = line.payload
    item = line.item
    return Order(
        customer=OrderCustomer(
            id=customer.id,
            first_name=customer.first_name,
            last_name=customer.last_name,
            email=customer.email,
        ),
        restaurant=OrderRestaurant(id=line.restaurant.id, name=line.restaurant.name),
        company=OrderCompany(id=company.id, name=company.name, shift=company.shift),
        delivery=Delivery(
            date=ms_to_date(payload.delivery_date),
            address=company.address.model_copy(),
        ),
        status=PROCESSING,
        item=OrderItem(
            id=item.id,
            name=item.name,
            tags=item.tags,
            description=item.description,
            image=item.image or line.restaurant.logo,
            quantity=payload.quantity,
            optional_addons=", ".join(sort_labels(create_addons(payload.optional_addons))),
            required_addons=", ".join(sort_labels(create_addons(payload.required_addons))),
            removed_ingredients=", ".join(
                sort_labels(ingredient.strip() for ingredient in payload.removed_ingredients)
            ),
            total=float(price_line(line)),
        ),
        created_at=now,
    )
