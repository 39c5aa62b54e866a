"""Tests for the delivery simulator."""

import random
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import select

from crm_api.models.communication_log import DeliveryStatus
from crm_api.models.sent_message import SentMessage
from crm_api.services.vendor_simulator import (
    FAILURE_REASONS,
    FLUSH_JOB_ID,
    DeliverySimulator,
    ReceiptMode,
    VendorMessage,
)

NO_DELAY = (0.0, 0.0)


def fake_recorder():
    """Recorder double that keeps every outcome it is given."""
    recorder = MagicMock()
    recorder.recorded = []

    async def record(outcome):
        recorder.recorded.append(outcome)

    async def record_many(outcomes):
        outcomes = list(outcomes)
        recorder.recorded.extend(outcomes)
        return len(outcomes)

    recorder.record = AsyncMock(side_effect=record)
    recorder.record_many = AsyncMock(side_effect=record_many)
    return recorder


def make_simulator(recorder, **kwargs):
    options = dict(
        latency=NO_DELAY,
        sent_receipt_delay=NO_DELAY,
        failed_receipt_delay=NO_DELAY,
        mode=ReceiptMode.BATCHED,
        rng=random.Random(1234),
    )
    options.update(kwargs)
    return DeliverySimulator(recorder, **options)


def message(n):
    return VendorMessage(message_id=f"m{n}", recipient_email=f"c{n}@example.com", message="Hello")


@pytest.mark.asyncio
async def test_roughly_nine_in_ten_messages_are_sent():
    simulator = make_simulator(fake_recorder())

    responses = [await simulator.send(message(n)) for n in range(1000)]

    sent = sum(1 for r in responses if r.status == DeliveryStatus.SENT)
    failed = sum(1 for r in responses if r.status == DeliveryStatus.FAILED)
    assert 850 <= sent <= 950
    assert sent + failed == 1000


@pytest.mark.asyncio
async def test_every_failure_has_a_reason():
    simulator = make_simulator(fake_recorder(), success_rate=0.0)

    responses = [await simulator.send(message(n)) for n in range(20)]

    assert all(r.status == DeliveryStatus.FAILED for r in responses)
    assert all(r.error_message in FAILURE_REASONS for r in responses)
    assert all(r.accepted for r in responses)


def test_decide_extremes():
    assert make_simulator(fake_recorder(), success_rate=1.0).decide() == (DeliveryStatus.SENT, None)
    status, reason = make_simulator(fake_recorder(), success_rate=0.0).decide()
    assert status == DeliveryStatus.FAILED
    assert reason in FAILURE_REASONS


@pytest.mark.asyncio
async def test_batched_receipts_flush_in_chunks():
    recorder = fake_recorder()
    simulator = make_simulator(recorder, batch_size=10)
    for n in range(25):
        await simulator.send(message(n))

    assert recorder.record_many.await_count == 0
    assert simulator.get_status()["pendingReceipts"] == 25

    applied = await simulator.flush()

    assert applied == 25
    assert recorder.record_many.await_count == 3
    assert [o.message_id for o in recorder.recorded] == [f"m{n}" for n in range(25)]


@pytest.mark.asyncio
async def test_failed_flush_keeps_receipts_for_next_attempt():
    recorder = fake_recorder()
    recorder.record_many.side_effect = [RuntimeError("database is locked"), 3]
    simulator = make_simulator(recorder)
    for n in range(3):
        await simulator.send(message(n))

    with pytest.raises(RuntimeError):
        await simulator.flush()
    assert simulator.get_status()["pendingReceipts"] == 3

    assert await simulator.flush() == 3
    assert simulator.get_status()["pendingReceipts"] == 0


@pytest.mark.asyncio
async def test_individual_receipts_are_recorded():
    recorder = fake_recorder()
    simulator = make_simulator(recorder, mode=ReceiptMode.INDIVIDUAL)

    response = await simulator.send(message(1))
    await simulator.wait_until_idle()

    assert len(recorder.recorded) == 1
    assert recorder.recorded[0].message_id == "m1"
    assert recorder.recorded[0].status == response.status


@pytest.mark.asyncio
async def test_stop_delivers_outstanding_receipts():
    recorder = fake_recorder()
    simulator = make_simulator(recorder, mode=ReceiptMode.INDIVIDUAL, sent_receipt_delay=(60, 60), failed_receipt_delay=(60, 60))
    simulator.start()
    await simulator.send(message(1))
    await simulator.send(message(2))

    await simulator.stop()

    assert sorted(o.message_id for o in recorder.recorded) == ["m1", "m2"]
    assert simulator.get_status()["inFlight"] == 0
    assert simulator.running is False


def test_start_registers_flush_job():
    scheduler = MagicMock()
    scheduler.get_job.return_value = None
    simulator = make_simulator(fake_recorder(), scheduler=scheduler)

    simulator.start()

    _, kwargs = scheduler.add_job.call_args
    assert kwargs["id"] == FLUSH_JOB_ID
    assert simulator.running is True


@pytest.mark.asyncio
async def test_receipt_reaches_database(test_db, recorder, add_delivery_records):
    await add_delivery_records("db-1")
    simulator = DeliverySimulator(
        recorder,
        latency=NO_DELAY,
        sent_receipt_delay=NO_DELAY,
        failed_receipt_delay=NO_DELAY,
        rng=random.Random(5),
    )

    response = await simulator.send(VendorMessage(message_id="db-1", recipient_email="x@example.com", message="Hi"))
    await simulator.wait_until_idle()

    status = await test_db.scalar(select(SentMessage.status).where(SentMessage.message_id == "db-1"))
    assert status == response.status.value
