"""
Order orchestration: create, confirm, cancel and the admin status changes.

``OrderService`` ties the pipeline together. A cart is validated against the
catalog snapshot, priced, reconciled against the shift stipend and then
either committed directly or deferred behind a Stripe checkout.
"""

import asyncio
import logging
import weakref
from decimal import Decimal
from typing import List

from .capacity import CapacitySlot, enforce_capacity, has_capacity, slots_for_orders, sweep_capacity
from .catalog import build_catalog_snapshot, get_active_company
from .errors import ChangesClosed, Conflict, InvalidCart, InvalidInput, NotFound, Unauthorized
from .notifications import order_archive_template, order_delivery_template
from .payments import CheckoutLineItem
from .pricing import build_order_line
from .schemas import (
    ACTIVE,
    ARCHIVED,
    CANCELLED,
    DELIVERED,
    PENDING,
    PROCESSING,
    CreateOrdersPayload,
    Order,
    Payment,
    Restaurant,
    User,
)
from .stipend import Reconciliation, reconcile
from .utils import Clock, date_to_ms, date_to_text, generate_random_string, round_money, to_decimal, utc_now
from .validation import ValidatedLine, validate_cart

logger = logging.getLogger(__name__)


def refund_amount(paid, refunded, asking) -> Decimal:
    """What to refund for one cancelled line of a shared payment"""
    paid, refunded, asking = to_decimal(paid), to_decimal(refunded), to_decimal(asking)
    if paid == refunded:
        return Decimal("0")
    if paid >= refunded + asking:
        return round_money(asking)
    return round_money(paid - refunded)


def is_scheduled(restaurant: Restaurant, order: Order) -> bool:
    """Whether the order's schedule is still open for changes"""
    delivery = date_to_ms(order.delivery.date)
    return any(
        schedule.status == ACTIVE
        and date_to_ms(schedule.date) == delivery
        and schedule.company.id == order.company.id
        for schedule in restaurant.schedules
    )


class OrderService:
    def __init__(self, store, gateway, mailer, clock: Clock = utc_now):
        self.store = store
        self.gateway = gateway
        self.mailer = mailer
        self.clock = clock
        self._refund_locks = weakref.WeakValueDictionary()

    # ============================================
    # CREATE
    # ============================================
    async def create_orders(self, customer: User, payload: CreateOrdersPayload):
        """Commit the cart, or return a checkout url when something is left to pay"""
        if not payload.order_items:
            raise InvalidInput("Please provide valid orders data")

        now = self.clock()
        company = get_active_company(customer.companies)
        snapshot = await build_catalog_snapshot(self.store, customer.companies, now, active_only=True)
        validated = validate_cart(snapshot, payload.order_items)
        await self.check_capacity(validated)

        lines = [build_order_line(line, customer, company, now) for line in validated]
        earliest = min(line.delivery.date for line in lines)
        existing = await self.store.find_customer_orders(customer.id, since=earliest)

        reconciliation = await reconcile(
            self.store, lines, existing, company.shift_budget, payload.discount_code_id
        )
        if not reconciliation.has_payable_items:
            return await self._commit(lines, reconciliation)
        return await self._checkout(customer, lines, reconciliation)

    async def check_capacity(self, validated: List[ValidatedLine]):
        """Best-effort: reject carts that would overfill a restaurant slot"""
        requested = {}
        for line in validated:
            slot = CapacitySlot(
                restaurant_id=line.restaurant.id,
                date=line.payload.delivery_date,
                company_id=line.payload.company_id,
                order_capacity=line.restaurant.order_capacity,
            )
            requested[slot] = requested.get(slot, 0) + line.payload.quantity

        bounded = [slot for slot in requested if slot.order_capacity is not None]
        if not bounded:
            return

        active_orders = await self.store.find_active_orders(
            company_ids=list({slot.company_id for slot in bounded}),
            restaurant_ids=list({slot.restaurant_id for slot in bounded}),
            dates=list({slot.date for slot in bounded}),
        )
        for slot in bounded:
            if not has_capacity(slot, requested[slot], active_orders):
                logger.info(f"Restaurant {slot.restaurant_id} is full on {slot.date}")
                raise InvalidCart()

    async def _commit(self, lines: List[Order], reconciliation: Reconciliation):
        orders = await self.store.insert_orders(lines)
        if reconciliation.discount_used:
            await self.store.increment_discount_redemption(reconciliation.discount_code.id)
        logger.info(f"Created {len(orders)} orders for {orders[0].customer.email}")
        await self._enforce_capacity(orders)
        return [order.for_customer() for order in orders]

    async def _checkout(self, customer: User, lines: List[Order], reconciliation: Reconciliation):
        correlation_id = generate_random_string()
        line_items = [
            CheckoutLineItem(
                label=f"{date_to_text(group.date)} - {group.shift.capitalize()}",
                description=", ".join(group.items),
                amount=group.amount,
            )
            for group in reconciliation.groups
        ]
        discount_code_id = reconciliation.discount_code.id if reconciliation.discount_used else None
        url = await self.gateway.create_checkout_session(
            customer.email,
            correlation_id,
            discount_code_id,
            reconciliation.discount_amount,
            line_items,
        )

        # Stay out of stipend and capacity totals until the webhook confirms payment
        pending = [
            line.model_copy(update={"status": PENDING, "pending_order_id": correlation_id})
            for line in lines
        ]
        await self.store.insert_orders(pending)
        logger.info(f"Created {len(pending)} pending orders behind checkout {correlation_id}")
        return {"url": url}

    async def confirm_checkout(
        self,
        pending_order_id: str,
        payment_intent: str,
        amount_paid,
        discount_code_id=None,
        discount_amount=0,
    ) -> List[Order]:
        """Turn a paid checkout's pending orders into processing orders, once"""
        payment = Payment(intent=payment_intent, amount=float(round_money(amount_paid)))
        orders = await self.store.confirm_pending_orders(pending_order_id, payment)
        if not orders:
            logger.info(f"No pending orders for checkout {pending_order_id}")
            return []

        if discount_code_id and to_decimal(discount_amount) > 0:
            await self.store.increment_discount_redemption(discount_code_id)
        logger.info(f"Confirmed {len(orders)} orders of checkout {pending_order_id}")
        await self._enforce_capacity(orders)
        return orders

    async def _enforce_capacity(self, orders: List[Order]):
        try:
            slots = await slots_for_orders(self.store, orders)
            await enforce_capacity(self.store, slots)
        except Exception:
            logger.exception("Capacity check after commit failed")

    # ============================================
    # CANCEL
    # ============================================
    def _refund_lock(self, intent: str) -> asyncio.Lock:
        lock = self._refund_locks.get(intent)
        if lock is None:
            lock = asyncio.Lock()
            self._refund_locks[intent] = lock
        return lock

    async def cancel_order(self, customer: User, order_id: str) -> dict:
        order = await self.store.get_order(order_id)
        if order is None or order.status != PROCESSING:
            raise NotFound("Order not found")
        if order.customer.id != customer.id:
            raise Unauthorized()

        restaurant = await self.store.get_restaurant(order.restaurant.id)
        if restaurant is None or not is_scheduled(restaurant, order):
            raise ChangesClosed()

        if order.payment is None or not order.payment.intent:
            return await self._mark_cancelled(order)

        intent = order.payment.intent
        async with self._refund_lock(intent):
            # Another cancel of the same order may have finished while we waited
            current = await self.store.get_order(order_id)
            if current is None or current.status != PROCESSING:
                raise NotFound("Order not found")
            refunded = await self.gateway.sum_succeeded_refunds(intent)
            refund = refund_amount(order.payment.amount, refunded, order.item.total)
            if refund > 0:
                await self.gateway.issue_refund(intent, refund)
            return await self._mark_cancelled(order)

    async def _mark_cancelled(self, order: Order) -> dict:
        updated = await self.store.update_order_status(order.id, CANCELLED)
        if updated is None:
            logger.error(f"Order {order.id} changed status while being cancelled")
            raise Conflict("Order status changed, please try again")
        logger.info(f"Order {order.id} cancelled")
        return {"message": "Order cancelled"}

    # ============================================
    # ADMIN STATUS CHANGES
    # ============================================
    async def deliver_orders(self, order_ids: List[str]) -> str:
        if not order_ids:
            raise InvalidInput("Please provide order ids")
        # Only orders this call moved to DELIVERED get an email
        orders = await self.store.mark_delivered(order_ids)
        await asyncio.gather(
            *(self.mailer.send(order_delivery_template(order)) for order in orders)
        )
        logger.info(f"Delivered {len(orders)} orders")
        return "Delivery email sent"

    async def archive_order(self, order_id: str) -> Order:
        order = await self.store.update_order_status(order_id, ARCHIVED)
        if order is None:
            raise NotFound("Order not found")
        await self.mailer.send(order_archive_template(order))
        return order

    # ============================================
    # LISTINGS
    # ============================================
    async def upcoming_restaurants(self, customer: User):
        return await build_catalog_snapshot(self.store, customer.companies, self.clock())

    async def customer_upcoming_orders(self, customer: User) -> List[dict]:
        orders = await self.store.find_orders(PROCESSING, customer_id=customer.id)
        return [order.for_customer() for order in orders]

    async def customer_delivered_orders(self, customer: User, limit: int) -> List[dict]:
        orders = await self.store.find_orders(
            DELIVERED, customer_id=customer.id, newest_first=True, limit=limit
        )
        return [order.for_customer() for order in orders]

    async def all_upcoming_orders(self) -> List[Order]:
        return await self.store.find_orders(PROCESSING)

    async def all_delivered_orders(self, limit: int) -> List[Order]:
        return await self.store.find_orders(DELIVERED, newest_first=True, limit=limit)

    async def delivered_orders_of(self, customer_id: str) -> List[Order]:
        return await self.store.find_orders(DELIVERED, customer_id=customer_id, newest_first=True)

    async def capacity_sweep(self) -> int:
        return await sweep_capacity(self.store, self.clock())
