"""
Catalog snapshot: the orderable (restaurant, date, company) rows for a customer.

The snapshot is the only catalog source the validator and price resolver
consult while a cart is processed.
"""

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import Field

from .errors import NoActiveShift
from .schemas import ACTIVE, CompanyMembership, Document, Item, Restaurant
from .utils import date_to_ms, start_of_day

logger = logging.getLogger(__name__)


class SnapshotCompany(Document):
    id: str = Field(alias="_id")
    shift: str


class SnapshotSchedule(Document):
    date: datetime
    status: str
    created_at: Optional[datetime] = None


class ScheduledRestaurant(Document):
    """One restaurant on one scheduled date for the customer's company"""

    id: str = Field(alias="_id")
    name: str
    logo: Optional[str] = None
    is_featured: bool = False
    order_capacity: Optional[int] = None
    items: List[Item]
    company: SnapshotCompany
    schedule: SnapshotSchedule

    @property
    def date_ms(self) -> int:
        return date_to_ms(self.schedule.date)

    def find_item(self, item_id: str) -> Optional[Item]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


def get_active_company(companies: List[CompanyMembership]) -> CompanyMembership:
    """The single ACTIVE membership; stipend and schedules follow it"""
    for company in companies:
        if company.status == ACTIVE:
            return company
    logger.warning("No enrolled shift found")
    raise NoActiveShift()


def orderable_items(restaurant: Restaurant) -> List[Item]:
    # sorted() is stable, so equal indexes keep their menu order
    items = sorted(
        (item for item in restaurant.items if item.status == ACTIVE),
        key=lambda item: item.index,
    )
    return [
        item.model_copy(
            update={
                "reviews": sorted(
                    item.reviews,
                    key=lambda review: date_to_ms(review.created_at),
                    reverse=True,
                )
            }
        )
        for item in items
    ]


def flatten_restaurants(
    restaurants: List[Restaurant],
    company_id: str,
    since: datetime,
    active_only: bool,
) -> List[ScheduledRestaurant]:
    since_ms = date_to_ms(since)
    rows = []
    for restaurant in restaurants:
        items = orderable_items(restaurant)
        for schedule in restaurant.schedules:
            if (
                date_to_ms(schedule.date) >= since_ms
                and (schedule.status == ACTIVE if active_only else True)
                and schedule.company.id == company_id
            ):
                rows.append(
                    ScheduledRestaurant(
                        id=restaurant.id,
                        name=restaurant.name,
                        logo=restaurant.logo,
                        is_featured=restaurant.is_featured,
                        order_capacity=restaurant.order_capacity,
                        items=items,
                        company=SnapshotCompany(id=schedule.company.id, shift=schedule.company.shift),
                        schedule=SnapshotSchedule(
                            date=schedule.date,
                            status=schedule.status,
                            created_at=schedule.created_at,
                        ),
                    )
                )
    return sorted(rows, key=lambda row: row.date_ms)


async def build_catalog_snapshot(
    store,
    companies: List[CompanyMembership],
    now: datetime,
    active_only: bool = False,
) -> List[ScheduledRestaurant]:
    """Upcoming scheduled restaurants of the customer's active company, sorted by date"""
    active_company = get_active_company(companies)
    today = start_of_day(now)
    restaurants = await store.find_scheduled_restaurants(
        company_id=active_company.id,
        since=today,
        active_only=active_only,
    )
    return flatten_restaurants(restaurants, active_company.id, today, active_only)
