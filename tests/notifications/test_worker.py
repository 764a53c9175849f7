from datetime import date, timedelta

import pytest
from sqlalchemy import select

from db.database import NotificationJob, utcnow
from schemas.orders import OrderCreate, OrderUpdate
from services.pricing import OrderPricingService
from services.queue import NotificationQueue
from services.worker import NotificationWorker
from tests.conftest import FakeMailer


async def _place_order(session_maker, backoff_ms=0, items=None):
    async with session_maker() as s:
        svc = OrderPricingService(s, queue=NotificationQueue(s, retry_attempts=1, backoff_ms=backoff_ms))
        order = await svc.create_order(
            OrderCreate(
                shopkeeper_id=5,
                distributor_id=7,
                salesperson_id=3,
                delivery_date=date(2024, 6, 1),
                payment_term="FULL",
                items=items or [{"product_id": 1, "quantity": 2}],
            )
        )
        return order.id


async def _jobs(session_maker, order_id):
    async with session_maker() as s:
        res = await s.execute(
            select(NotificationJob).where(NotificationJob.order_id == order_id).order_by(NotificationJob.id)
        )
        return list(res.scalars().all())


def _worker(session_maker, mailer):
    return NotificationWorker(session_maker, mailer, concurrency=4, currency_symbol="Rs.", signature="Team")


async def test_confirmation_sent_once_to_all_parties(session_maker, catalog, mailer):
    order_id = await _place_order(session_maker)
    worker = _worker(session_maker, mailer)

    assert await worker.run_once() == 1
    assert await worker.run_once() == 0

    assert len(mailer.sent) == 1
    sent = mailer.sent[0]
    assert sent["subject"] == f"Order Confirmation - Order #{order_id}"
    assert sorted(sent["recipients"]) == ["corner@shop.example", "depot@north.example", "ravi@sales.example"]
    assert "Rs.200.00" in sent["html"]

    [job] = await _jobs(session_maker, order_id)
    assert job.status == "SENT"
    assert job.attempts_made == 1
    assert job.sent_at is not None


async def test_retry_once_then_dead_letter(session_maker, catalog):
    order_id = await _place_order(session_maker, backoff_ms=0)
    mailer = FakeMailer(mode="fail")
    worker = _worker(session_maker, mailer)

    await worker.run_once()
    [job] = await _jobs(session_maker, order_id)
    assert job.status == "ENQUEUED"
    assert job.last_error == "SMTP unavailable"

    await worker.run_once()
    [job] = await _jobs(session_maker, order_id)
    assert job.status == "FAILED"
    assert job.attempts_made == 2

    assert await worker.run_once() == 0
    assert mailer.calls == 2


async def test_backoff_delays_the_retry(session_maker, catalog):
    order_id = await _place_order(session_maker, backoff_ms=60_000)
    mailer = FakeMailer(mode="fail")
    worker = _worker(session_maker, mailer)

    await worker.run_once()
    assert await worker.run_once() == 0
    [job] = await _jobs(session_maker, order_id)
    assert job.status == "ENQUEUED"
    assert mailer.calls == 1


async def test_permanent_rejection_is_not_retried(session_maker, catalog):
    order_id = await _place_order(session_maker)
    mailer = FakeMailer(mode="permanent")
    await _worker(session_maker, mailer).run_once()

    [job] = await _jobs(session_maker, order_id)
    assert job.status == "FAILED"
    assert job.last_error == "Invalid email address"
    assert mailer.calls == 1


async def test_job_for_missing_order_is_dropped(session_maker, catalog, mailer):
    async with session_maker() as s:
        NotificationQueue(s).enqueue(999)
        await s.commit()

    await _worker(session_maker, mailer).run_once()

    [job] = await _jobs(session_maker, 999)
    assert job.status == "FAILED"
    assert job.last_error == "Order not found"
    assert mailer.calls == 0


async def test_update_mail_shows_revised_quantities(session_maker, catalog, mailer):
    order_id = await _place_order(session_maker)
    async with session_maker() as s:
        await OrderPricingService(s).update_order(
            order_id,
            OrderUpdate(items=[{"product_id": 1, "quantity": 1}, {"product_id": 2, "quantity": 4}]),
        )

    worker = _worker(session_maker, mailer)
    assert await worker.run_once() == 2

    subjects = sorted(m["subject"] for m in mailer.sent)
    assert subjects == [f"Order Confirmation - Order #{order_id}", f"Order Updated - Order #{order_id}"]
    update = next(m for m in mailer.sent if m["subject"].startswith("Order Updated"))
    assert "Previous Quantity" in update["html"]
    assert "Rs.300.00" in update["html"]
    assert 'class="revised"' in update["html"]


async def test_render_failure_is_recorded_and_retried(session_maker, catalog, mailer, monkeypatch):
    order_id = await _place_order(session_maker, backoff_ms=0)

    def broken_template(*args, **kwargs):
        raise RuntimeError("template broke")

    monkeypatch.setattr("services.worker.render_order_confirmation", broken_template)
    await _worker(session_maker, mailer)._tick()

    [job] = await _jobs(session_maker, order_id)
    assert job.status == "ENQUEUED"
    assert job.last_error == "template broke"
    assert job.attempts_made == 1
    assert mailer.calls == 0


async def test_stale_in_flight_jobs_are_recovered(session_maker, catalog):
    order_id = await _place_order(session_maker)
    other_id = await _place_order(session_maker)

    async with session_maker() as s:
        queue = NotificationQueue(s)
        claimed = await queue.claim(10)
        assert len(claimed) == 2
        for job in claimed:
            job.locked_at = utcnow() - timedelta(hours=1)
            if job.order_id == other_id:
                job.attempts_made = 2
        await s.commit()

    async with session_maker() as s:
        assert await NotificationQueue(s).recover_stale(visibility_seconds=300) == 2

    [job] = await _jobs(session_maker, order_id)
    assert job.status == "ENQUEUED"
    [job] = await _jobs(session_maker, other_id)
    assert job.status == "FAILED"
    assert job.last_error == "Worker lost the job"


async def test_worker_survives_a_failing_tick(session_maker, catalog, mailer):
    worker = _worker(session_maker, mailer)

    async def boom():
        raise RuntimeError("db down")

    worker.run_once = boom
    await worker._tick()


@pytest.mark.parametrize("attempts,expected_ms", [(1, 3000), (2, 6000), (3, 12000)])
def test_backoff_delay(attempts, expected_ms):
    from services.queue import backoff_delay

    assert backoff_delay(3000, attempts) == timedelta(milliseconds=expected_ms)
