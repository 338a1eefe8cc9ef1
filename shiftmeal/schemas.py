"""
Document schemas for shiftmeal.

Each document model maps to a MongoDB collection (orders, restaurants, users,
discountcodes). Attributes are snake_case in Python and camelCase on disk;
``_id`` is exposed as ``id``. Dump with ``model_dump(by_alias=True)`` before
writing.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .addons import Addon, format_addons, parse_addons, split_ingredients

ACTIVE = "ACTIVE"
INACTIVE = "INACTIVE"
ARCHIVED = "ARCHIVED"

PENDING = "PENDING"
PROCESSING = "PROCESSING"
DELIVERED = "DELIVERED"
CANCELLED = "CANCELLED"

# Orders that count against stipends and restaurant capacity
ACTIVE_ORDER_STATUSES = (PROCESSING, DELIVERED)

OrderStatus = Literal["PENDING", "PROCESSING", "DELIVERED", "ARCHIVED", "CANCELLED"]


class Document(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class Address(Document):
    city: str
    state: str
    zip: str
    address_line1: str
    address_line2: Optional[str] = None


# ============================================
# RESTAURANT (aggregate root)
# ============================================
class AddonSpec(Document):
    """Add-on rules of an item; stored as 'label-price, ...' text"""

    addons: List[Addon] = Field(default_factory=list)
    addable: int = 0

    @field_validator("addons", mode="before")
    @classmethod
    def parse_text(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return parse_addons(value)
        return value

    @field_serializer("addons")
    def format_text(self, addons: List[Addon]) -> str:
        return format_addons(addons)

    @property
    def labels(self) -> List[str]:
        return [addon.key for addon in self.addons]


class Review(Document):
    customer: str
    rating: int
    comment: str = ""
    created_at: datetime

    @field_validator("customer", mode="before")
    @classmethod
    def stringify(cls, value):
        return str(value)


class Item(Document):
    id: str = Field(alias="_id")
    name: str
    price: float
    tags: str = ""
    description: str = ""
    image: Optional[str] = None
    status: str = ACTIVE
    index: int = 0
    optional_addons: AddonSpec = Field(default_factory=AddonSpec)
    required_addons: AddonSpec = Field(default_factory=AddonSpec)
    removable_ingredients: List[str] = Field(default_factory=list)
    reviews: List[Review] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)

    @field_validator("optional_addons", "required_addons", mode="before")
    @classmethod
    def default_spec(cls, value):
        return value or {}

    @field_validator("removable_ingredients", mode="before")
    @classmethod
    def parse_ingredients(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return split_ingredients(value)
        return value

    @field_serializer("removable_ingredients")
    def format_ingredients(self, ingredients: List[str]) -> str:
        return ", ".join(ingredients)


class ScheduleCompany(Document):
    id: str = Field(alias="_id")
    name: Optional[str] = None
    shift: str

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)


class Schedule(Document):
    date: datetime
    status: str = ACTIVE
    created_at: Optional[datetime] = None
    company: ScheduleCompany
    deactivated_by_admin: bool = False


class Restaurant(Document):
    id: str = Field(alias="_id")
    name: str
    logo: Optional[str] = None
    is_featured: bool = False
    order_capacity: Optional[int] = None
    items: List[Item] = Field(default_factory=list)
    schedules: List[Schedule] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)

    @field_validator("order_capacity", mode="before")
    @classmethod
    def unbounded_capacity(cls, value):
        # Older documents use Infinity for "no limit"
        if value is None or value == float("inf"):
            return None
        return int(value)


# ============================================
# USERS & COMPANIES
# ============================================
class CompanyMembership(Document):
    id: str = Field(alias="_id")
    name: str
    shift: str
    shift_budget: float = 0
    address: Address
    status: str = ACTIVE

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)


class Subscriptions(Document):
    order_reminder: bool = True


class User(Document):
    id: str = Field(alias="_id")
    first_name: str
    last_name: str
    email: str
    password: Optional[str] = None
    role: Literal["ADMIN", "VENDOR", "CUSTOMER"]
    status: str = ACTIVE
    companies: List[CompanyMembership] = Field(default_factory=list)
    restaurant: Optional[str] = None
    subscribed_to: Subscriptions = Field(default_factory=Subscriptions)

    @field_validator("id", "restaurant", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return None if value is None else str(value)


class DiscountCode(Document):
    id: str = Field(alias="_id")
    code: str
    value: float
    redeemability: Literal["once", "unlimited"]
    total_redeem: int = 0

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return str(value)

    @property
    def is_redeemable(self) -> bool:
        if self.redeemability == "unlimited":
            return True
        return self.total_redeem < 1


# ============================================
# ORDERS
# ============================================
class OrderCustomer(Document):
    id: str = Field(alias="_id")
    first_name: str
    last_name: str
    email: str


class OrderRestaurant(Document):
    id: str = Field(alias="_id")
    name: str


class OrderCompany(Document):
    id: str = Field(alias="_id")
    name: str
    shift: str


class Delivery(Document):
    date: datetime
    address: Address


class OrderItem(Document):
    id: str = Field(alias="_id")
    name: str
    tags: str = ""
    description: str = ""
    image: Optional[str] = None
    quantity: int
    optional_addons: str = ""
    required_addons: str = ""
    removed_ingredients: str = ""
    total: float


class Payment(Document):
    intent: str
    amount: float


class Order(Document):
    id: Optional[str] = Field(default=None, alias="_id")
    customer: OrderCustomer
    restaurant: OrderRestaurant
    company: OrderCompany
    delivery: Delivery
    status: OrderStatus
    item: OrderItem
    pending_order_id: Optional[str] = None
    payment: Optional[Payment] = None
    is_reviewed: bool = False
    created_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, value):
        return None if value is None else str(value)

    def for_customer(self) -> dict:
        """Projection returned to the customer after ordering"""
        return {
            "_id": self.id,
            "item": self.item.model_dump(by_alias=True),
            "status": self.status,
            "createdAt": self.created_at,
            "restaurant": self.restaurant.model_dump(by_alias=True),
            "delivery": {"date": self.delivery.date},
            "isReviewed": self.is_reviewed,
            "company": {"shift": self.company.shift},
        }


# ============================================
# REQUEST PAYLOADS
# ============================================
class OrderItemPayload(Document):
    item_id: str
    quantity: int = Field(..., ge=1)
    company_id: str
    restaurant_id: str
    delivery_date: int = Field(..., description="Delivery date as epoch milliseconds")
    optional_addons: List[str] = Field(default_factory=list)
    required_addons: List[str] = Field(default_factory=list)
    removed_ingredients: List[str] = Field(default_factory=list)


class CreateOrdersPayload(Document):
    order_items: List[OrderItemPayload]
    discount_code_id: Optional[str] = None


class OrderIdsPayload(Document):
    order_ids: List[str]


class LoginPayload(BaseModel):
    email: str
    password: str
