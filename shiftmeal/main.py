"""
SHIFTMEAL API
Corporate lunch ordering: stipends, scheduled restaurants and Stripe checkout
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware

from .auth import (
    create_jwt_token,
    get_current_admin,
    get_current_customer,
    get_current_user,
    verify_password,
)
from .config import LOG_LEVEL, PORT, REMINDERS_ENABLED
from .database import Database, MongoStore
from .errors import InvalidCredentials, register_error_handlers
from .notifications import Mailer
from .orders import OrderService
from .payments import StripeGateway
from .reminders import ReminderScheduler
from .schemas import ACTIVE, CreateOrdersPayload, LoginPayload, OrderIdsPayload, User
from .utils import Clock, to_decimal, utc_now

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# ============================================
# DEPENDENCIES
# ============================================
def get_service(request: Request) -> OrderService:
    return request.app.state.service


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.gateway


# ============================================
# USER ENDPOINTS
# ============================================
users = APIRouter(prefix="/users", tags=["users"])


@users.post("/login")
async def login(body: LoginPayload, request: Request):
    """Login user and return JWT token"""
    user = await request.app.state.store.find_user_by_email(body.email)
    if (
        not user
        or user.status != ACTIVE
        or not user.password
        or not verify_password(body.password, user.password)
    ):
        raise InvalidCredentials()

    return {
        "message": "Login successful",
        "token": create_jwt_token(user.id),
        "user": user.model_dump(by_alias=True, exclude={"password"}),
    }


@users.get("/me")
async def me(user: User = Depends(get_current_user)):
    return user.model_dump(by_alias=True, exclude={"password"})


# ============================================
# RESTAURANT ENDPOINTS
# ============================================
restaurants = APIRouter(prefix="/restaurants", tags=["restaurants"])


@restaurants.get("/upcoming-restaurants")
async def upcoming_restaurants(
    customer: User = Depends(get_current_customer),
    service: OrderService = Depends(get_service),
):
    """Scheduled restaurants of the customer's company from today on"""
    return await service.upcoming_restaurants(customer)


@restaurants.post("/capacity-sweep")
async def capacity_sweep(
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    """Deactivate every upcoming schedule that is already full"""
    return {"deactivated": await service.capacity_sweep()}


# ============================================
# ORDER ENDPOINTS
# ============================================
orders = APIRouter(prefix="/orders", tags=["orders"])


@orders.get("/me/upcoming-orders")
async def my_upcoming_orders(
    customer: User = Depends(get_current_customer),
    service: OrderService = Depends(get_service),
):
    return await service.customer_upcoming_orders(customer)


@orders.get("/me/delivered-orders/{limit}")
async def my_delivered_orders(
    limit: int,
    customer: User = Depends(get_current_customer),
    service: OrderService = Depends(get_service),
):
    return await service.customer_delivered_orders(customer, limit)


@orders.post("/create-orders", status_code=201)
async def create_orders(
    body: CreateOrdersPayload,
    customer: User = Depends(get_current_customer),
    service: OrderService = Depends(get_service),
):
    """Create orders, or a checkout url when the stipend doesn't cover the cart"""
    return await service.create_orders(customer, body)


@orders.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    customer: User = Depends(get_current_customer),
    service: OrderService = Depends(get_service),
):
    return await service.cancel_order(customer, order_id)


# Admin
@orders.get("/all-upcoming-orders")
async def all_upcoming_orders(
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    return await service.all_upcoming_orders()


@orders.get("/all-delivered-orders/{limit}")
async def all_delivered_orders(
    limit: int,
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    return await service.all_delivered_orders(limit)


@orders.get("/{customer_id}/all-delivered-orders")
async def customer_delivered_orders(
    customer_id: str,
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    return await service.delivered_orders_of(customer_id)


@orders.patch("/change-orders-status")
async def change_orders_status(
    body: OrderIdsPayload,
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    """Mark orders delivered and email the customers"""
    return await service.deliver_orders(body.order_ids)


@orders.patch("/{order_id}/change-order-status", status_code=201)
async def change_order_status(
    order_id: str,
    admin: User = Depends(get_current_admin),
    service: OrderService = Depends(get_service),
):
    """Archive a processing order and email the customer"""
    return await service.archive_order(order_id)


# ============================================
# STRIPE WEBHOOK
# ============================================
stripe_routes = APIRouter(prefix="/stripe", tags=["stripe"])


@stripe_routes.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    gateway: StripeGateway = Depends(get_gateway),
    service: OrderService = Depends(get_service),
):
    event = gateway.parse_webhook(await request.body(), stripe_signature)
    if event["type"] == "checkout.session.completed":
        session = event["data"]["object"]
        details = json.loads(session["metadata"]["details"])
        await service.confirm_checkout(
            pending_order_id=details["pendingOrderId"],
            payment_intent=session["payment_intent"],
            amount_paid=to_decimal(session["amount_total"]) / 100,
            discount_code_id=details.get("discountCodeId"),
            discount_amount=details.get("discountAmount") or 0,
        )
    else:
        logger.info(f"Ignored webhook event {event['type']}")
    return {"received": True}


# ============================================
# FASTAPI APPLICATION
# ============================================
def create_app(
    store=None,
    gateway=None,
    mailer=None,
    clock: Clock = utc_now,
    reminders: bool = REMINDERS_ENABLED,
) -> FastAPI:
    """Build the app; collaborators left out are created on startup"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.store is None:
            app.state.store = MongoStore(await Database.initialize())
            app.state.service = OrderService(
                app.state.store, app.state.gateway, app.state.mailer, clock
            )
        scheduler = None
        if reminders:
            scheduler = ReminderScheduler(app.state.store, app.state.mailer, clock)
            scheduler.start()
        yield
        if scheduler is not None:
            await scheduler.stop()
        await Database.close()

    app = FastAPI(
        title="Shiftmeal API",
        description="Corporate lunch ordering with shift stipends",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    app.state.store = store
    app.state.gateway = gateway or StripeGateway()
    app.state.mailer = mailer or Mailer()
    app.state.service = None
    if store is not None:
        app.state.service = OrderService(store, app.state.gateway, app.state.mailer, clock)

    for router in (users, restaurants, orders, stripe_routes):
        app.include_router(router)
    return app


app = create_app()


# ============================================
# MAIN ENTRY POINT
# ============================================
if __name__ == "__main__":
    uvicorn.run("shiftmeal.main:app", host="0.0.0.0", port=PORT, reload=True)
