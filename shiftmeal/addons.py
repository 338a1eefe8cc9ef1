"""
Add-on codec.

Restaurants store add-on specs as text, e.g. ``"Cheese - 1, Bacon - 2.5"``.
Inside the service they are a list of :class:`Addon` values; this module is
the only place that converts between the two forms.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from .utils import to_decimal


@dataclass(frozen=True)
class Addon:
    label: str
    price: Decimal

    @property
    def key(self) -> str:
        return self.label.lower()


def split_addons(text: Optional[str]) -> List[List[str]]:
    """Split 'label-price, label-price' into trimmed [label, price] pairs"""
    if not text or not text.strip():
        return []
    return [
        [part.strip() for part in entry.strip().split("-")]
        for entry in text.split(",")
    ]


def parse_addons(text: Optional[str]) -> List[Addon]:
    addons = []
    for pair in split_addons(text):
        label = pair[0]
        if not label:
            continue
        try:
            price = to_decimal(pair[1]) if len(pair) > 1 and pair[1] else Decimal("0")
        except InvalidOperation:
            price = Decimal("0")
        addons.append(Addon(label=label, price=price))
    return addons


def format_addons(addons: List[Addon]) -> str:
    return ", ".join(f"{addon.label} - {format_price(addon.price)}" for addon in addons)


def format_price(price: Decimal) -> str:
    return format(price.normalize(), "f")


def addon_label(selection: str) -> str:
    """Normalized label of a client selection such as 'Cheese - 1'"""
    return selection.split("-")[0].strip().lower()


def split_ingredients(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [ingredient.strip() for ingredient in text.split(",") if ingredient.strip()]
