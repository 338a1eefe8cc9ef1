"""
Weekly order reminders.

Customers who have restaurants scheduled for their company but no order for
next week get an email on Thursday afternoon and again on Friday morning.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from .config import REMINDER_TIMEZONE
from .notifications import Email, friday_order_reminder_template, thursday_order_reminder_template
from .schemas import ACTIVE
from .utils import Clock, get_future_date, utc_now

logger = logging.getLogger(__name__)

THURSDAY = 3
FRIDAY = 4


async def send_order_reminder_emails(store, mailer, template: Callable[..., Email], now: datetime) -> int:
    """Email subscribed customers with nothing ordered for next week"""
    customers = await store.find_reminder_customers()
    restaurants = await store.find_upcoming_restaurants(since=now)
    scheduled_company_ids = {
        schedule.company.id
        for restaurant in restaurants
        for schedule in restaurant.schedules
        if schedule.status == ACTIVE and schedule.date >= now
    }

    # Next week Monday up to the following Sunday
    ordered = set(
        await store.find_order_customer_ids(get_future_date(now, 8), get_future_date(now, 14))
    )

    recipients = [
        customer
        for customer in customers
        if customer.id not in ordered
        and any(company.id in scheduled_company_ids for company in customer.companies)
    ]

    sent = 0
    for customer in recipients:
        try:
            await mailer.send(template(customer))
            sent += 1
        except Exception:
            logger.exception(f"Failed to send order reminder to {customer.email}")
    logger.info(f"Sent {sent} of {len(recipients)} order reminders")
    return sent


@dataclass
class ReminderJob:
    weekday: int
    hour: int
    template: Callable[..., Email]

    def next_run(self, now: datetime, tz: ZoneInfo) -> datetime:
        local = now.astimezone(tz)
        run = local.replace(hour=self.hour, minute=0, second=0, microsecond=0)
        run += timedelta(days=(self.weekday - local.weekday()) % 7)
        if run <= local:
            run += timedelta(days=7)
        return run


REMINDER_JOBS = [
    ReminderJob(weekday=THURSDAY, hour=14, template=thursday_order_reminder_template),
    ReminderJob(weekday=FRIDAY, hour=8, template=friday_order_reminder_template),
]


class ReminderScheduler:
    """Background task that runs the reminder jobs; owned by the app lifespan"""

    def __init__(self, store, mailer, clock: Clock = utc_now,
                 timezone: str = REMINDER_TIMEZONE, jobs: Optional[List[ReminderJob]] = None,
                 sleep=asyncio.sleep):
        self.store = store
        self.mailer = mailer
        self.clock = clock
        self.tz = ZoneInfo(timezone)
        self.jobs = jobs or REMINDER_JOBS
        self.sleep = sleep
        self._task = None

    def next_job(self, now: datetime):
        return min(
            ((job.next_run(now, self.tz), job) for job in self.jobs),
            key=lambda pair: pair[0],
        )

    async def wait_until(self, run_at: datetime):
        """Sleep until the clock reaches ``run_at``; early wakeups sleep again"""
        while True:
            delay = (run_at - self.clock()).total_seconds()
            if delay <= 0:
                return
            await self.sleep(delay)

    async def run(self):
        after = self.clock()
        while True:
            run_at, job = self.next_job(after)
            logger.info(f"Next order reminder at {run_at.isoformat()}")
            await self.wait_until(run_at)
            try:
                await send_order_reminder_emails(self.store, self.mailer, job.template, self.clock())
            except Exception:
                logger.exception("Order reminder sweep failed")
            after = run_at

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
