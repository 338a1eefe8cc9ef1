"""
MongoDB persistence.

``Database`` owns the client; ``MongoStore`` exposes the queries the order
pipeline needs and converts between documents and schema models. Ids are
ObjectIds on disk and strings everywhere else.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, ReturnDocument

from .config import DATABASE_NAME, DATABASE_URL
from .schemas import (
    ACTIVE,
    ACTIVE_ORDER_STATUSES,
    DELIVERED,
    PENDING,
    PROCESSING,
    DiscountCode,
    Order,
    Payment,
    Restaurant,
    Schedule,
    User,
)
from .utils import ms_to_date

logger = logging.getLogger(__name__)


# ============================================
# CONVERSION HELPERS
# ============================================
def object_id(value):
    """ObjectId for a valid hex id, the value unchanged otherwise"""
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return value


def encode(value):
    """Prepare a dumped model for writing: every ``_id`` becomes an ObjectId"""
    if isinstance(value, dict):
        return {
            key: object_id(item) if key == "_id" else encode(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [encode(item) for item in value]
    return value


def decode(value):
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {key: decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [decode(item) for item in value]
    return value


def to_document(model) -> dict:
    document = encode(model.model_dump(by_alias=True))
    if document.get("_id") is None:
        document.pop("_id", None)
    return document


# ============================================
# DATABASE SETUP
# ============================================
class Database:
    _client = None
    _db = None

    @classmethod
    async def initialize(cls, url: str = DATABASE_URL, name: str = DATABASE_NAME):
        """Open the client and make sure indexes exist"""
        if cls._client is None:
            cls._client = AsyncMongoClient(url, tz_aware=True)
            cls._db = cls._client[name]
            await cls._create_indexes()
            logger.info(f"Connected to MongoDB database {name}")
        return cls._db

    @classmethod
    async def _create_indexes(cls):
        await cls._db.orders.create_index([("customer._id", ASCENDING), ("delivery.date", ASCENDING)])
        await cls._db.orders.create_index([("status", ASCENDING), ("delivery.date", ASCENDING)])
        await cls._db.orders.create_index("pendingOrderId", sparse=True)
        await cls._db.restaurants.create_index("schedules.date")
        await cls._db.users.create_index("email", unique=True)
        await cls._db.discountcodes.create_index("code", unique=True)

    @classmethod
    async def close(cls):
        if cls._client is not None:
            await cls._client.close()
            cls._client = None
            cls._db = None


# ============================================
# STORE
# ============================================
class MongoStore:
    def __init__(self, db):
        self.db = db

    # ---------- restaurants ----------
    async def find_scheduled_restaurants(
        self, company_id: str, since: datetime, active_only: bool = False
    ) -> List[Restaurant]:
        schedule_filter = {"date": {"$gte": since}, "company._id": object_id(company_id)}
        if active_only:
            schedule_filter["status"] = ACTIVE
        cursor = self.db.restaurants.find({"schedules": {"$elemMatch": schedule_filter}})
        return [Restaurant.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def find_upcoming_restaurants(self, since: datetime) -> List[Restaurant]:
        cursor = self.db.restaurants.find(
            {"schedules": {"$elemMatch": {"status": ACTIVE, "date": {"$gte": since}}}}
        )
        return [Restaurant.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def get_restaurant(self, restaurant_id: str) -> Optional[Restaurant]:
        doc = await self.db.restaurants.find_one({"_id": object_id(restaurant_id)})
        return Restaurant.model_validate(decode(doc)) if doc else None

    async def save_schedules(self, restaurant_id: str, schedules: List[Schedule]):
        await self.db.restaurants.update_one(
            {"_id": object_id(restaurant_id)},
            {"$set": {"schedules": [encode(s.model_dump(by_alias=True)) for s in schedules]}},
        )

    # ---------- orders ----------
    async def insert_orders(self, orders: List[Order]) -> List[Order]:
        result = await self.db.orders.insert_many([to_document(order) for order in orders])
        return [
            order.model_copy(update={"id": str(inserted_id)})
            for order, inserted_id in zip(orders, result.inserted_ids)
        ]

    async def get_order(self, order_id: str) -> Optional[Order]:
        if not ObjectId.is_valid(order_id):
            return None
        doc = await self.db.orders.find_one({"_id": ObjectId(order_id)})
        return Order.model_validate(decode(doc)) if doc else None

    async def find_orders(
        self,
        status: str,
        customer_id: Optional[str] = None,
        newest_first: bool = False,
        limit: int = 0,
    ) -> List[Order]:
        query = {"status": status}
        if customer_id:
            query["customer._id"] = object_id(customer_id)
        cursor = self.db.orders.find(query).sort(
            "delivery.date", DESCENDING if newest_first else ASCENDING
        )
        if limit:
            cursor = cursor.limit(limit)
        return [Order.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def find_customer_orders(
        self, customer_id: str, since: datetime, statuses: Iterable[str] = ACTIVE_ORDER_STATUSES
    ) -> List[Order]:
        cursor = self.db.orders.find(
            {
                "customer._id": object_id(customer_id),
                "status": {"$in": list(statuses)},
                "delivery.date": {"$gte": since},
            }
        )
        return [Order.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def find_active_orders(
        self, company_ids: List[str], restaurant_ids: List[str], dates: List[int]
    ) -> List[Order]:
        cursor = self.db.orders.find(
            {
                "status": {"$in": list(ACTIVE_ORDER_STATUSES)},
                "company._id": {"$in": [object_id(i) for i in company_ids]},
                "restaurant._id": {"$in": [object_id(i) for i in restaurant_ids]},
                "delivery.date": {"$in": [ms_to_date(date) for date in dates]},
            }
        )
        return [Order.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def update_order_status(
        self, order_id: str, status: str, from_status: str = PROCESSING
    ) -> Optional[Order]:
        """Move one order between statuses; None when it isn't in ``from_status``"""
        if not ObjectId.is_valid(order_id):
            return None
        doc = await self.db.orders.find_one_and_update(
            {"_id": ObjectId(order_id), "status": from_status},
            {"$set": {"status": status}},
            return_document=ReturnDocument.AFTER,
        )
        return Order.model_validate(decode(doc)) if doc else None

    async def mark_delivered(self, order_ids: List[str]) -> List[Order]:
        """Deliver PROCESSING orders; only the ones flipped by this call come back"""
        delivered = []
        for order_id in dict.fromkeys(order_ids):
            order = await self.update_order_status(order_id, DELIVERED)
            if order is not None:
                delivered.append(order)
        return delivered

    async def confirm_pending_orders(self, pending_order_id: str, payment: Payment) -> List[Order]:
        """Flip a checkout's PENDING orders to PROCESSING; empty when already done"""
        query = {"pendingOrderId": pending_order_id, "status": PENDING}
        cursor = self.db.orders.find(query)
        pending = await cursor.to_list()
        if not pending:
            return []
        ids = [doc["_id"] for doc in pending]
        result = await self.db.orders.update_many(
            {"_id": {"$in": ids}, "status": PENDING},
            {"$set": {"status": PROCESSING, "payment": payment.model_dump(by_alias=True)}},
        )
        # A concurrent delivery of the same webhook got there first
        if result.modified_count == 0:
            return []
        cursor = self.db.orders.find({"_id": {"$in": ids}})
        return [Order.model_validate(decode(doc)) for doc in await cursor.to_list()]

    async def find_order_customer_ids(self, start: datetime, end: datetime) -> List[str]:
        """Customers with any order delivered in [start, end)"""
        ids = await self.db.orders.distinct(
            "customer._id", {"delivery.date": {"$gte": start, "$lt": end}}
        )
        return [str(i) for i in ids]

    # ---------- discount codes ----------
    async def get_discount_code(self, discount_code_id: str) -> Optional[DiscountCode]:
        if not ObjectId.is_valid(discount_code_id):
            return None
        doc = await self.db.discountcodes.find_one({"_id": ObjectId(discount_code_id)})
        return DiscountCode.model_validate(decode(doc)) if doc else None

    async def increment_discount_redemption(self, discount_code_id: str):
        await self.db.discountcodes.update_one(
            {"_id": object_id(discount_code_id)}, {"$inc": {"totalRedeem": 1}}
        )

    # ---------- users ----------
    async def get_user(self, user_id: str) -> Optional[User]:
        if not ObjectId.is_valid(user_id):
            return None
        doc = await self.db.users.find_one({"_id": ObjectId(user_id)})
        return User.model_validate(decode(doc)) if doc else None

    async def find_user_by_email(self, email: str) -> Optional[User]:
        doc = await self.db.users.find_one({"email": email.lower()})
        return User.model_validate(decode(doc)) if doc else None

    async def find_reminder_customers(self) -> List[User]:
        cursor = self.db.users.find(
            {"role": "CUSTOMER", "status": ACTIVE, "subscribedTo.orderReminder": True}
        )
        return [User.model_validate(decode(doc)) for doc in await cursor.to_list()]

