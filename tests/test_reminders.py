from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from factories import NEXT_TUESDAY, NOW, OTHER_COMPANY_ID, OTHER_CUSTOMER_ID, make_customer, make_membership, make_order
from shiftmeal.config import BRAND_URL
from shiftmeal.notifications import thursday_order_reminder_template
from shiftmeal.reminders import REMINDER_JOBS, ReminderScheduler, send_order_reminder_emails
from shiftmeal.schemas import Subscriptions

LOS_ANGELES = ZoneInfo("America/Los_Angeles")


@pytest.mark.anyio
async def test_reminds_customers_without_next_week_orders(store, mailer, customer):
    await send_order_reminder_emails(store, mailer, thursday_order_reminder_template, NOW)

    assert [email.to for email in mailer.sent] == [customer.email]
    assert "NOON Friday" in mailer.sent[0].html
    assert BRAND_URL in mailer.sent[0].html
    assert "Spork" not in mailer.sent[0].html


@pytest.mark.anyio
async def test_skips_customers_who_already_ordered(store, mailer):
    store.add_orders(make_order(date=NEXT_TUESDAY))

    assert await send_order_reminder_emails(store, mailer, thursday_order_reminder_template, NOW) == 0
    assert mailer.sent == []


@pytest.mark.anyio
async def test_skips_unsubscribed_and_unscheduled_customers(store, mailer, customer):
    store.add_user(make_customer(user_id=OTHER_CUSTOMER_ID, companies=[make_membership(OTHER_COMPANY_ID)]))
    store.add_user(customer.model_copy(update={"subscribed_to": Subscriptions(order_reminder=False)}))

    assert await send_order_reminder_emails(store, mailer, thursday_order_reminder_template, NOW) == 0


@pytest.mark.anyio
async def test_send_failures_are_logged(store, customer, caplog):
    class BrokenMailer:
        async def send(self, email):
            raise ConnectionError("smtp down")

    assert await send_order_reminder_emails(store, BrokenMailer(), thursday_order_reminder_template, NOW) == 0
    assert f"Failed to send order reminder to {customer.email}" in caplog.text


def test_next_runs_are_thursday_afternoon_and_friday_morning():
    thursday, friday = REMINDER_JOBS

    assert thursday.next_run(NOW, LOS_ANGELES) == datetime(2026, 10, 22, 14, tzinfo=LOS_ANGELES)
    assert friday.next_run(NOW, LOS_ANGELES) == datetime(2026, 10, 23, 8, tzinfo=LOS_ANGELES)


def test_job_that_just_ran_moves_to_next_week():
    thursday = REMINDER_JOBS[0]
    ran_at = datetime(2026, 10, 22, 14, tzinfo=LOS_ANGELES)

    assert thursday.next_run(ran_at, LOS_ANGELES) == datetime(2026, 10, 29, 14, tzinfo=LOS_ANGELES)


def test_scheduler_picks_soonest_job(store, mailer):
    friday_morning = datetime(2026, 10, 23, 15, tzinfo=timezone.utc)  # 08:00 in LA
    scheduler = ReminderScheduler(store, mailer, clock=lambda: friday_morning)

    run_at, job = scheduler.next_job(friday_morning)

    assert job is REMINDER_JOBS[0]
    assert run_at == datetime(2026, 10, 29, 14, tzinfo=LOS_ANGELES)


@pytest.mark.anyio
async def test_early_wakeup_sleeps_again(store, mailer):
    run_at = datetime(2026, 10, 22, 14, tzinfo=LOS_ANGELES)
    now = [NOW]
    delays = []

    async def early_sleep(delay):
        delays.append(delay)
        # Wakes with a minute still to go the first time
        now[0] = run_at - timedelta(minutes=1) if len(delays) == 1 else run_at

    scheduler = ReminderScheduler(store, mailer, clock=lambda: now[0], sleep=early_sleep)

    await scheduler.wait_until(run_at)

    assert len(delays) == 2
    assert delays[1] == 60
    assert now[0] >= run_at
