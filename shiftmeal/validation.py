"""
Cart validation against a catalog snapshot.

A cart is accepted or rejected as a whole; nothing is written before every
line has passed.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from .addons import addon_label
from .catalog import ScheduledRestaurant
from .errors import InvalidCart, InvalidInput
from .schemas import AddonSpec, Item, OrderItemPayload

logger = logging.getLogger(__name__)


@dataclass
class ValidatedLine:
    """A cart line paired with the snapshot row and item it refers to"""

    payload: OrderItemPayload
    restaurant: ScheduledRestaurant
    item: Item


def optional_addons_are_valid(spec: AddonSpec, selections: List[str]) -> bool:
    if not selections:
        return True
    return spec.addable >= len(selections) and labels_are_known(spec, selections)


def required_addons_are_valid(spec: AddonSpec, selections: List[str]) -> bool:
    if not selections:
        return True
    return spec.addable == len(selections) and labels_are_known(spec, selections)


def labels_are_known(spec: AddonSpec, selections: List[str]) -> bool:
    labels = spec.labels
    return all(addon_label(selection) in labels for selection in selections)


def removed_ingredients_are_valid(item: Item, removed: List[str]) -> bool:
    removable = [ingredient.lower() for ingredient in item.removable_ingredients]
    return all(ingredient.strip().lower() in removable for ingredient in removed)


def item_accepts(item: Item, payload: OrderItemPayload) -> bool:
    return (
        optional_addons_are_valid(item.optional_addons, payload.optional_addons)
        and required_addons_are_valid(item.required_addons, payload.required_addons)
        and removed_ingredients_are_valid(item, payload.removed_ingredients)
    )


def match_line(
    snapshot: List[ScheduledRestaurant], payload: OrderItemPayload
) -> Optional[ValidatedLine]:
    for restaurant in snapshot:
        if (
            restaurant.id == payload.restaurant_id
            and restaurant.company.id == payload.company_id
            and restaurant.date_ms == payload.delivery_date
        ):
            item = restaurant.find_item(payload.item_id)
            if item and item_accepts(item, payload):
                return ValidatedLine(payload=payload, restaurant=restaurant, item=item)
    return None


def validate_cart(
    snapshot: List[ScheduledRestaurant], items: List[OrderItemPayload]
) -> List[ValidatedLine]:
    """Match every cart line to the snapshot, or reject the whole cart"""
    if not items:
        raise InvalidInput("Please provide valid orders data")

    lines = []
    for payload in items:
        line = match_line(snapshot, payload)
        if line is None:
            logger.info(
                f"Rejected cart line: item {payload.item_id} of restaurant "
                f"{payload.restaurant_id} on {payload.delivery_date}"
            )
            raise InvalidCart()
        lines.append(line)
    return lines
