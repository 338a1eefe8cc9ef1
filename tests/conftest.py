import itertools
import json
from decimal import Decimal

import pytest

from factories import NOW, make_customer, make_discount, make_restaurant
from shiftmeal.errors import InvalidInput
from shiftmeal.orders import OrderService
from shiftmeal.schemas import ACTIVE, ACTIVE_ORDER_STATUSES, DELIVERED, PENDING, PROCESSING
from shiftmeal.utils import date_to_ms


class MemoryStore:
    """In-memory stand-in for MongoStore"""

    def __init__(self):
        self.restaurants = {}
        self.orders = {}
        self.users = {}
        self.discount_codes = {}
        self._ids = itertools.count(1)

    def add_restaurant(self, restaurant):
        self.restaurants[restaurant.id] = restaurant

    def add_user(self, user):
        self.users[user.id] = user

    def add_discount(self, discount):
        self.discount_codes[discount.id] = discount

    def add_orders(self, *orders):
        return [self._put(order) for order in orders]

    def _put(self, order):
        if order.id is None:
            order = order.model_copy(update={"id": f"{next(self._ids):024x}"})
        self.orders[order.id] = order
        return order

    # ---------- restaurants ----------
    async def find_scheduled_restaurants(self, company_id, since, active_only=False):
        return [
            restaurant.model_copy(deep=True)
            for restaurant in self.restaurants.values()
            if any(
                schedule.date >= since
                and schedule.company.id == company_id
                and (schedule.status == ACTIVE or not active_only)
                for schedule in restaurant.schedules
            )
        ]

    async def find_upcoming_restaurants(self, since):
        return [
            restaurant.model_copy(deep=True)
            for restaurant in self.restaurants.values()
            if any(s.status == ACTIVE and s.date >= since for s in restaurant.schedules)
        ]

    async def get_restaurant(self, restaurant_id):
        restaurant = self.restaurants.get(restaurant_id)
        return restaurant.model_copy(deep=True) if restaurant else None

    async def save_schedules(self, restaurant_id, schedules):
        restaurant = self.restaurants[restaurant_id]
        self.restaurants[restaurant_id] = restaurant.model_copy(
            update={"schedules": [s.model_copy(deep=True) for s in schedules]}
        )

    # ---------- orders ----------
    async def insert_orders(self, orders):
        return [self._put(order) for order in orders]

    async def get_order(self, order_id):
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def find_orders(self, status, customer_id=None, newest_first=False, limit=0):
        orders = [
            order for order in self.orders.values()
            if order.status == status and (customer_id is None or order.customer.id == customer_id)
        ]
        orders.sort(key=lambda order: order.delivery.date, reverse=newest_first)
        return orders[:limit] if limit else orders

    async def find_customer_orders(self, customer_id, since, statuses=ACTIVE_ORDER_STATUSES):
        return [
            order for order in self.orders.values()
            if order.customer.id == customer_id
            and order.status in statuses
            and order.delivery.date >= since
        ]

    async def find_active_orders(self, company_ids, restaurant_ids, dates):
        return [
            order for order in self.orders.values()
            if order.status in ACTIVE_ORDER_STATUSES
            and order.company.id in company_ids
            and order.restaurant.id in restaurant_ids
            and date_to_ms(order.delivery.date) in dates
        ]

    async def update_order_status(self, order_id, status, from_status=PROCESSING):
        order = self.orders.get(order_id)
        if order is None or order.status != from_status:
            return None
        return self._put(order.model_copy(update={"status": status}))

    async def mark_delivered(self, order_ids):
        delivered = []
        for order_id in dict.fromkeys(order_ids):
            order = await self.update_order_status(order_id, DELIVERED)
            if order is not None:
                delivered.append(order)
        return delivered

    async def confirm_pending_orders(self, pending_order_id, payment):
        return [
            self._put(order.model_copy(update={"status": PROCESSING, "payment": payment}))
            for order in list(self.orders.values())
            if order.pending_order_id == pending_order_id and order.status == PENDING
        ]

    async def find_order_customer_ids(self, start, end):
        return list({
            order.customer.id for order in self.orders.values()
            if start <= order.delivery.date < end
        })

    # ---------- discount codes ----------
    async def get_discount_code(self, discount_code_id):
        discount = self.discount_codes.get(discount_code_id)
        return discount.model_copy() if discount else None

    async def increment_discount_redemption(self, discount_code_id):
        discount = self.discount_codes[discount_code_id]
        self.discount_codes[discount_code_id] = discount.model_copy(
            update={"total_redeem": discount.total_redeem + 1}
        )

    # ---------- users ----------
    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def find_user_by_email(self, email):
        for user in self.users.values():
            if user.email == email.lower():
                return user
        return None

    async def find_reminder_customers(self):
        return [
            user for user in self.users.values()
            if user.role == "CUSTOMER" and user.status == ACTIVE and user.subscribed_to.order_reminder
        ]


class FakeGateway:
    def __init__(self):
        self.sessions = []
        self.refunds = []
        self.refunded = {}

    async def create_checkout_session(self, customer_email, correlation_id, discount_code_id,
                                      discount_amount, line_items):
        self.sessions.append(
            {
                "customer_email": customer_email,
                "correlation_id": correlation_id,
                "discount_code_id": discount_code_id,
                "discount_amount": discount_amount,
                "line_items": line_items,
            }
        )
        return f"https://checkout.stripe.test/{correlation_id}"

    async def issue_refund(self, intent, amount):
        self.refunds.append((intent, amount))
        self.refunded[intent] = self.refunded.get(intent, Decimal("0")) + amount

    async def sum_succeeded_refunds(self, intent):
        return self.refunded.get(intent, Decimal("0"))

    def parse_webhook(self, payload, signature):
        if signature != "valid":
            raise InvalidInput("Invalid webhook signature")
        return json.loads(payload)


class FakeMailer:
    def __init__(self):
        self.sent = []

    async def send(self, email):
        self.sent.append(email)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    store = MemoryStore()
    store.add_restaurant(make_restaurant())
    store.add_user(make_customer())
    return store


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def customer(store):
    return next(iter(store.users.values()))


@pytest.fixture
def discount(store):
    discount = make_discount()
    store.add_discount(discount)
    return discount


@pytest.fixture
def service(store, gateway, mailer):
    return OrderService(store, gateway, mailer, clock=lambda: NOW)
