# tests/unit/time/test_mailbox.py
"""Tests for ResponseSlot and RequestMailbox.

Level 0 in the dependency tree - only needs a running event loop.

Test Coverage:
- Single-use response slots (resolve once, read once)
- FIFO order of queued requests
- Bounded capacity with producers waiting for space
- In-flight accounting
- Closing the mailbox
"""

import asyncio

import pytest

from vtharness.errors import ClockTerminatedError, InvariantViolation
from vtharness.time.mailbox import (
    DEFAULT_MAILBOX_CAPACITY,
    NowRequest,
    RequestMailbox,
    ResponseSlot,
    SleepRequest,
)


# ================================================================
# RESPONSE SLOT TESTS
# ================================================================
class TestResponseSlot:
    """Test the single-use completion handle."""

    @pytest.mark.asyncio
    async def test_resolve_then_wait_returns_value(self):
        slot = ResponseSlot()

        assert slot.resolve(42) is True
        assert slot.done()
        assert await slot.wait() == 42

    @pytest.mark.asyncio
    async def test_resolving_twice_is_an_invariant_violation(self):
        """Test that a slot can only be written once.

        WHY: Every request is answered exactly once.
        """
        slot = ResponseSlot()
        slot.resolve(1)

        with pytest.raises(InvariantViolation):
            slot.resolve(2)
        with pytest.raises(InvariantViolation):
            slot.fail(RuntimeError("late"))

    @pytest.mark.asyncio
    async def test_reading_twice_is_an_invariant_violation(self):
        slot = ResponseSlot()
        slot.resolve(1)
        await slot.wait()

        with pytest.raises(InvariantViolation):
            await slot.wait()

    @pytest.mark.asyncio
    async def test_fail_delivers_exception(self):
        slot = ResponseSlot()
        slot.fail(ClockTerminatedError("gone"))

        with pytest.raises(ClockTerminatedError):
            await slot.wait()

    @pytest.mark.asyncio
    async def test_resolving_cancelled_slot_returns_false(self):
        """Test that a cancelled waiter does not break the service.

        WHY: A participant may be cancelled while its sleep is pending.
        """
        slot = ResponseSlot()
        slot.future.cancel()

        assert slot.resolve(5) is False
        assert slot.fail(RuntimeError("x")) is False


# ================================================================
# MAILBOX FIFO TESTS
# ================================================================
class TestMailboxFifo:
    """Test request ordering and non-blocking take."""

    @pytest.mark.asyncio
    async def test_take_on_empty_returns_none(self):
        mailbox = RequestMailbox()

        assert mailbox.take() is None
        assert mailbox.empty()
        assert mailbox.capacity == DEFAULT_MAILBOX_CAPACITY

    @pytest.mark.asyncio
    async def test_requests_taken_in_submission_order(self):
        mailbox = RequestMailbox(capacity=8)
        requests = [
            SleepRequest(duration=10, slot=ResponseSlot(), participant="a"),
            NowRequest(slot=ResponseSlot(), participant="b"),
            SleepRequest(duration=5, slot=ResponseSlot(), participant="c"),
        ]
        for request in requests:
            await mailbox.submit(request)

        assert mailbox.qsize() == 3
        assert [mailbox.take() for _ in range(3)] == requests
        assert mailbox.take() is None

    @pytest.mark.asyncio
    async def test_in_flight_tracks_queued_requests(self):
        mailbox = RequestMailbox(capacity=4)
        await mailbox.submit(NowRequest(slot=ResponseSlot()))

        assert mailbox.in_flight == 1
        assert not mailbox.empty()

        mailbox.take()
        assert mailbox.in_flight == 0
        assert mailbox.empty()

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            RequestMailbox(capacity=0)

    @pytest.mark.asyncio
    async def test_wait_for_arrival_returns_when_nothing_in_flight(self):
        mailbox = RequestMailbox()

        await asyncio.wait_for(mailbox.wait_for_arrival(), timeout=1.0)
        assert mailbox.in_flight == 0

    @pytest.mark.asyncio
    async def test_wait_for_arrival_waits_for_admitted_submitter(self):
        """Test that the consumer waits while a woken submitter enqueues.

        WHY: The clock sees in_flight > 0 with nothing queued between a
        submitter being admitted and its request landing.
        """
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="a"))
        submitter = asyncio.create_task(
            mailbox.submit(NowRequest(slot=ResponseSlot(), participant="b"))
        )
        await asyncio.sleep(0)

        mailbox.take()
        assert mailbox.qsize() == 0
        assert mailbox.in_flight == 1

        await asyncio.wait_for(mailbox.wait_for_arrival(), timeout=1.0)
        assert mailbox.take().participant == "b"
        await submitter


# ================================================================
# CAPACITY TESTS
# ================================================================
class TestMailboxCapacity:
    """Test the bounded-capacity behaviour."""

    @pytest.mark.asyncio
    async def test_full_mailbox_holds_submitter_in_flight(self):
        """Test that a submitter waiting for space counts as in flight.

        WHY: The clock must not advance time while a request is on its way.
        """
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="first"))

        second = NowRequest(slot=ResponseSlot(), participant="second")
        submitter = asyncio.create_task(mailbox.submit(second))
        await asyncio.sleep(0)

        assert not submitter.done()
        assert mailbox.qsize() == 1
        assert mailbox.in_flight == 2

        first = mailbox.take()
        assert first.participant == "first"
        assert not mailbox.empty()

        await asyncio.wait_for(submitter, timeout=1.0)
        assert mailbox.take() is second
        assert mailbox.empty()

    @pytest.mark.asyncio
    async def test_waiting_submitters_admitted_in_order(self):
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="p0"))

        submitters = [
            asyncio.create_task(mailbox.submit(NowRequest(slot=ResponseSlot(), participant=f"p{i}")))
            for i in range(1, 4)
        ]
        await asyncio.sleep(0)

        order = []
        while len(order) < 4:
            request = mailbox.take()
            if request is None:
                await mailbox.wait_for_arrival()
                continue
            order.append(request.participant)

        await asyncio.gather(*submitters)
        assert order == ["p0", "p1", "p2", "p3"]

    @pytest.mark.asyncio
    async def test_cancelled_submitter_passes_wakeup_on(self):
        """Test that a submitter cancelled after being admitted hands its turn on.

        WHY: Otherwise the next waiter is never woken, the consumer sees a
        request in flight forever and the run hangs.
        """
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="a"))
        second = asyncio.create_task(
            mailbox.submit(NowRequest(slot=ResponseSlot(), participant="b"))
        )
        third = asyncio.create_task(
            mailbox.submit(NowRequest(slot=ResponseSlot(), participant="c"))
        )
        await asyncio.sleep(0)

        assert mailbox.take().participant == "a"
        second.cancel()
        with pytest.raises(asyncio.CancelledError):
            await second

        await asyncio.wait_for(mailbox.wait_for_arrival(), timeout=1.0)
        assert mailbox.take().participant == "c"
        await asyncio.wait_for(third, timeout=1.0)
        assert mailbox.in_flight == 0
        assert mailbox.empty()

    @pytest.mark.asyncio
    async def test_cancelled_waiting_submitter_leaves_no_request_in_flight(self):
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="a"))
        submitter = asyncio.create_task(
            mailbox.submit(NowRequest(slot=ResponseSlot(), participant="b"))
        )
        await asyncio.sleep(0)
        assert mailbox.in_flight == 2

        submitter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await submitter

        assert mailbox.in_flight == 1
        assert mailbox.take().participant == "a"
        assert mailbox.empty()

    @pytest.mark.asyncio
    async def test_consumer_released_when_last_submitter_cancelled(self):
        """Test that wait_for_arrival() returns once nothing is in flight.

        WHY: A consumer already waiting for an admitted submitter must not
        hang when that submitter is cancelled instead of enqueueing.
        """
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="a"))
        submitter = asyncio.create_task(
            mailbox.submit(NowRequest(slot=ResponseSlot(), participant="b"))
        )
        await asyncio.sleep(0)

        mailbox.take()
        consumer = asyncio.create_task(mailbox.wait_for_arrival())
        submitter.cancel()

        await asyncio.wait_for(consumer, timeout=1.0)
        assert submitter.cancelled()
        assert mailbox.in_flight == 0
        assert mailbox.take() is None


# ================================================================
# CLOSE TESTS
# ================================================================
class TestMailboxClose:
    """Test closing the mailbox at clock termination."""

    @pytest.mark.asyncio
    async def test_close_returns_leftover_requests(self):
        mailbox = RequestMailbox()
        request = NowRequest(slot=ResponseSlot())
        await mailbox.submit(request)

        assert mailbox.close() == [request]
        assert mailbox.closed
        assert mailbox.empty()

    @pytest.mark.asyncio
    async def test_submit_after_close_raises(self):
        """Test that requests after termination are rejected.

        WHY: A request reaching a terminated clock would never be answered.
        """
        mailbox = RequestMailbox()
        mailbox.close()

        with pytest.raises(ClockTerminatedError):
            await mailbox.submit(NowRequest(slot=ResponseSlot(), participant="late"))
        assert mailbox.in_flight == 0

    @pytest.mark.asyncio
    async def test_close_releases_waiting_submitters_with_error(self):
        mailbox = RequestMailbox(capacity=1)
        await mailbox.submit(NowRequest(slot=ResponseSlot()))
        submitter = asyncio.create_task(mailbox.submit(NowRequest(slot=ResponseSlot())))
        await asyncio.sleep(0)

        mailbox.close()

        with pytest.raises(ClockTerminatedError):
            await submitter
        assert mailbox.in_flight == 0

    @pytest.mark.asyncio
    async def test_describe_reports_state(self):
        mailbox = RequestMailbox(capacity=3)
        await mailbox.submit(NowRequest(slot=ResponseSlot()))

        assert mailbox.describe() == {
            "capacity": 3,
            "queued": 1,
            "in_flight": 1,
            "closed": False,
        }
