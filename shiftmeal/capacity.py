"""
Capacity governor.

Restaurants declare an order capacity that applies to each (date, company)
slot. Once active orders for a slot reach it, the matching schedule is
switched off. Nothing here locks the slot, so two concurrent carts can both
get in before the switch.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from .schemas import ACTIVE, INACTIVE, Order
from .utils import date_to_ms, start_of_day

logger = logging.getLogger(__name__)

SlotKey = Tuple[str, int, str]


@dataclass(frozen=True)
class CapacitySlot:
    restaurant_id: str
    date: int
    company_id: str
    order_capacity: Optional[int]

    @property
    def key(self) -> SlotKey:
        return self.restaurant_id, self.date, self.company_id


def slot_key(order: Order) -> SlotKey:
    return order.restaurant.id, date_to_ms(order.delivery.date), order.company.id


def ordered_quantities(active_orders: Iterable[Order]) -> Dict[SlotKey, int]:
    quantities: Dict[SlotKey, int] = {}
    for order in active_orders:
        key = slot_key(order)
        quantities[key] = quantities.get(key, 0) + order.item.quantity
    return quantities


def has_capacity(slot: CapacitySlot, requested: int, active_orders: Iterable[Order]) -> bool:
    if slot.order_capacity is None:
        return True
    ordered = ordered_quantities(active_orders).get(slot.key, 0)
    return slot.order_capacity >= ordered + requested


def saturated_slots(slots: Iterable[CapacitySlot], active_orders: Iterable[Order]) -> List[CapacitySlot]:
    quantities = ordered_quantities(active_orders)
    return [
        slot
        for slot in slots
        if slot.order_capacity is not None
        and quantities.get(slot.key, 0) >= slot.order_capacity
    ]


async def deactivate_slot(store, slot: CapacitySlot) -> bool:
    """Switch off the slot's schedule with a read-modify-write of the restaurant"""
    restaurant = await store.get_restaurant(slot.restaurant_id)
    if restaurant is None:
        return False

    changed = False
    for schedule in restaurant.schedules:
        if (
            date_to_ms(schedule.date) == slot.date
            and schedule.company.id == slot.company_id
            and schedule.status == ACTIVE
        ):
            schedule.status = INACTIVE
            changed = True

    if changed:
        await store.save_schedules(restaurant.id, restaurant.schedules)
        logger.info(f"Schedule of restaurant {restaurant.id} on {slot.date} is full, deactivated")
    return changed


async def enforce_capacity(store, slots: List[CapacitySlot]) -> int:
    """Deactivate every full slot; failures are logged and skipped"""
    slots = [slot for slot in slots if slot.order_capacity is not None]
    if not slots:
        return 0

    active_orders = await store.find_active_orders(
        company_ids=list({slot.company_id for slot in slots}),
        restaurant_ids=list({slot.restaurant_id for slot in slots}),
        dates=list({slot.date for slot in slots}),
    )

    deactivated = 0
    for slot in saturated_slots(slots, active_orders):
        try:
            if await deactivate_slot(store, slot):
                deactivated += 1
        except Exception:
            logger.exception(f"Failed to deactivate schedule of restaurant {slot.restaurant_id}")
    return deactivated


async def sweep_capacity(store, now: datetime) -> int:
    """Check every upcoming active schedule of restaurants with a capacity"""
    restaurants = await store.find_upcoming_restaurants(since=start_of_day(now))
    slots = []
    for restaurant in restaurants:
        if restaurant.order_capacity is None:
            continue
        for schedule in restaurant.schedules:
            if schedule.status == ACTIVE and schedule.date >= start_of_day(now):
                slots.append(
                    CapacitySlot(
                        restaurant_id=restaurant.id,
                        date=date_to_ms(schedule.date),
                        company_id=schedule.company.id,
                        order_capacity=restaurant.order_capacity,
                    )
                )
    deactivated = await enforce_capacity(store, slots)
    logger.info(f"Capacity sweep checked {len(slots)} schedules, deactivated {deactivated}")
    return deactivated


async def slots_for_orders(store, orders: Iterable[Order]) -> List[CapacitySlot]:
    """Distinct slots touched by ``orders``, with their restaurant's capacity"""
    capacities: Dict[str, Optional[int]] = {}
    slots = {}
    for order in orders:
        restaurant_id = order.restaurant.id
        if restaurant_id not in capacities:
            restaurant = await store.get_restaurant(restaurant_id)
            capacities[restaurant_id] = restaurant.order_capacity if restaurant else None
        slot = CapacitySlot(
            restaurant_id=restaurant_id,
            date=date_to_ms(order.delivery.date),
            company_id=order.company.id,
            order_capacity=capacities[restaurant_id],
        )
        slots[slot.key] = slot
    return list(slots.values())
