"""Batch dispatcher tests against the database."""

import asyncio
from collections import Counter
from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from src.announcements.dispatcher import BatchDispatcher
from src.announcements.dtos import AnnouncementStatus, BatchStatus
from src.announcements.repository.orm_models import AnnouncementBatch
from src.announcements.repository.write_models import SqlAnnouncementWriteModel
from src.config.database import async_session_manager
from src.cache.namespace import CacheNamespaceManager
from src.cache.store import InMemoryKeyValueStore
from src.errors import (
    AnnouncementStateError,
    DispatchInProgressError,
    InputValidationError,
    NotFoundError,
)
from src.guests.dtos import InvitationEventStatus
from src.notifications.dtos import Channel, MessageKind
from src.notifications.rate_limiter import RateLimiter
from src.notifications.tests.inmemory_models import (
    FixedClock,
    InMemoryMailLogStore,
    RecordingSender,
)


class CrashingSender(RecordingSender):
    """Dies on the n-th call without sending, like a worker process being killed."""

    def __init__(self, crash_on_call: int):
        super().__init__()
        self.calls = 0
        self.crash_on_call = crash_on_call

    async def send(self, message, destination):
        self.calls += 1
        if self.calls == self.crash_on_call:
            raise RuntimeError("worker died")
        return await super().send(message, destination)


class CancellingSender(RecordingSender):
    """Cancels the announcement while the first batch is being sent."""

    def __init__(self, store, wedding_id):
        super().__init__()
        self.store = store
        self.wedding_id = wedding_id
        self.announcement_id = None
        self.cancelled = False

    async def send(self, message, destination):
        if not self.cancelled:
            self.cancelled = True
            await self.store.cancel(self.wedding_id, self.announcement_id)
        return await super().send(message, destination)


class SlowSender(RecordingSender):
    """Takes a while per message, so a second run can start mid-dispatch."""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def send(self, message, destination):
        self.started.set()
        await asyncio.sleep(0.01)
        return await super().send(message, destination)


class StatsReadingSender(CrashingSender):
    """Reads the cached stats on one call, then dies on a later one."""

    def __init__(self, read_on_call, crash_on_call, read_stats):
        super().__init__(crash_on_call)
        self.read_on_call = read_on_call
        self.read_stats = read_stats
        self.stats_seen = None

    async def send(self, message, destination):
        self.calls += 1
        call = self.calls
        if call == self.read_on_call:
            self.stats_seen = await self.read_stats()
        if call == self.crash_on_call:
            raise RuntimeError("worker died")
        return await RecordingSender.send(self, message, destination)


def build_dispatcher(sender, max_per_day=100, mail_logs=None, cache=None, store=None):
    store = store or SqlAnnouncementWriteModel()
    rate_limiter = RateLimiter(
        mail_logs or InMemoryMailLogStore(), max_per_day=max_per_day, clock=FixedClock()
    )
    dispatcher = BatchDispatcher(
        store, {Channel.EMAIL: sender}, rate_limiter, cache=cache, concurrency=5
    )
    return dispatcher, store


async def seed_guests(seed, wedding_id, count):
    return [
        await seed.guest(wedding_id, first_name=f"Guest{i:02d}", email=f"guest{i:02d}@example.com")
        for i in range(count)
    ]


async def create(store, wedding_id, guest_ids=None, **kwargs):
    return await store.create_announcement(
        wedding_id=wedding_id,
        title="Shuttle",
        subject="Shuttle times",
        content="<p>The bus leaves at 13:00</p>",
        channel=Channel.EMAIL,
        guest_ids=guest_ids,
        send_to_all=guest_ids is None,
        batch_size=kwargs.pop("batch_size", 20),
        **kwargs,
    )


async def batches_of(announcement_id):
    async with async_session_manager() as session:
        rows = await session.execute(
            select(AnnouncementBatch)
            .where(AnnouncementBatch.announcement_id == announcement_id)
            .order_by(AnnouncementBatch.batch_number)
        )
        return rows.scalars().all()


@pytest.mark.asyncio
async def test_45_recipients_in_batches_of_20_with_one_failure(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 45)
    sender = RecordingSender(failing={"guest07@example.com"})
    dispatcher, store = build_dispatcher(sender)
    announcement = await create(store, wedding_id)

    result = await dispatcher.dispatch(wedding_id, announcement.uuid)

    assert result.batches == 3
    assert result.sent == 44
    assert result.failed == 1
    assert result.status == AnnouncementStatus.SENT
    assert result.errors[0].startswith("Guest07 Doe:")
    batches = await batches_of(announcement.uuid)
    assert [batch.total_in_batch for batch in batches] == [20, 20, 5]
    assert all(batch.status == BatchStatus.COMPLETED for batch in batches)
    assert sum(batch.sent_count for batch in batches) == 44
    assert sum(batch.failed_count for batch in batches) == 1

    stats = await store.get_stats(wedding_id, announcement.uuid)
    assert stats.sent_count == 44
    assert stats.failed_count == 1
    assert stats.pending_count == 0


@pytest.mark.asyncio
async def test_resume_after_crash_never_sends_twice(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 45)
    crashing = CrashingSender(crash_on_call=25)
    dispatcher, store = build_dispatcher(crashing)
    announcement = await create(store, wedding_id)

    with pytest.raises(RuntimeError):
        await dispatcher.dispatch(wedding_id, announcement.uuid)

    stats = await store.get_stats(wedding_id, announcement.uuid)
    assert stats.status == AnnouncementStatus.SENDING
    assert stats.sent_count == 39
    assert stats.pending_count == 6

    with pytest.raises(AnnouncementStateError):
        await dispatcher.dispatch(wedding_id, announcement.uuid)

    healthy = RecordingSender()
    dispatcher, store = build_dispatcher(healthy)
    result = await dispatcher.dispatch(wedding_id, announcement.uuid, resume=True)

    assert result.sent == 6
    assert result.status == AnnouncementStatus.SENT
    deliveries = Counter(crashing.destinations + healthy.destinations)
    assert len(deliveries) == 45
    assert set(deliveries.values()) == {1}
    assert len(await batches_of(announcement.uuid)) == 3


@pytest.mark.asyncio
async def test_cancel_stops_at_batch_boundary(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 45)
    store = SqlAnnouncementWriteModel()
    sender = CancellingSender(store, wedding_id)
    dispatcher, store = build_dispatcher(sender)
    announcement = await create(store, wedding_id)
    sender.announcement_id = announcement.uuid

    result = await dispatcher.dispatch(wedding_id, announcement.uuid)

    assert result.cancelled is True
    assert result.batches == 1
    assert result.sent == 20
    assert result.status == AnnouncementStatus.CANCELLED
    stats = await store.get_stats(wedding_id, announcement.uuid)
    assert stats.pending_count == 25

    with pytest.raises(AnnouncementStateError):
        await dispatcher.resend(wedding_id, announcement.uuid)


@pytest.mark.asyncio
async def test_resend_only_contacts_failed_recipients(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 25)
    dispatcher, store = build_dispatcher(RecordingSender(failing={"guest03@example.com"}))
    announcement = await create(store, wedding_id)
    await dispatcher.dispatch(wedding_id, announcement.uuid)

    retry_sender = RecordingSender()
    dispatcher, store = build_dispatcher(retry_sender)
    result = await dispatcher.resend(wedding_id, announcement.uuid)

    assert retry_sender.destinations == ["guest03@example.com"]
    assert result.sent == 1
    assert result.status == AnnouncementStatus.SENT
    stats = await store.get_stats(wedding_id, announcement.uuid)
    assert stats.sent_count == 25
    assert stats.failed_count == 0


@pytest.mark.asyncio
async def test_every_send_failing_marks_announcement_failed(seed):
    wedding_id = await seed.wedding()
    await seed.guest(wedding_id, email="a@example.com")
    await seed.guest(wedding_id, email="b@example.com")
    dispatcher, store = build_dispatcher(
        RecordingSender(failing={"a@example.com", "b@example.com"})
    )
    announcement = await create(store, wedding_id)

    result = await dispatcher.dispatch(wedding_id, announcement.uuid)

    assert result.status == AnnouncementStatus.FAILED
    assert (await batches_of(announcement.uuid))[0].status == BatchStatus.FAILED


@pytest.mark.asyncio
async def test_guests_without_email_are_skipped(seed):
    wedding_id = await seed.wedding()
    with_email = await seed.guest(wedding_id, email="a@example.com")
    without_email = await seed.guest(wedding_id, email=None)
    sender = RecordingSender()
    dispatcher, store = build_dispatcher(sender)
    announcement = await create(store, wedding_id, guest_ids=[with_email, without_email])

    result = await dispatcher.dispatch(wedding_id, announcement.uuid)

    assert sender.destinations == ["a@example.com"]
    assert result.status == AnnouncementStatus.SENT
    stats = await store.get_stats(wedding_id, announcement.uuid)
    assert stats.total_recipients == 2
    assert stats.skipped_count == 1


@pytest.mark.asyncio
async def test_rate_limited_invitation_holders_are_skipped_and_logged(seed):
    wedding_id = await seed.wedding()
    event_id = await seed.event(wedding_id)
    invited = await seed.guest(wedding_id, first_name="Amy", email="amy@example.com")
    await seed.invitation(wedding_id, invited, "tok-amy", {event_id: InvitationEventStatus.INVITED})
    uninvited = await seed.guest(wedding_id, first_name="Bob", email="bob@example.com")

    mail_logs = InMemoryMailLogStore()
    sender = RecordingSender()
    dispatcher, store = build_dispatcher(sender, max_per_day=1, mail_logs=mail_logs)
    first = await create(store, wedding_id, guest_ids=[invited, uninvited])
    second = await create(store, wedding_id, guest_ids=[invited, uninvited])

    await dispatcher.dispatch(wedding_id, first.uuid)
    result = await dispatcher.dispatch(wedding_id, second.uuid)

    assert result.sent == 1
    assert result.skipped == 1
    assert sender.destinations.count("amy@example.com") == 1
    assert sender.destinations.count("bob@example.com") == 2
    assert [(entry.token, entry.kind) for entry in mail_logs.entries] == [
        ("tok-amy", MessageKind.ANNOUNCEMENT)
    ]


@pytest.mark.asyncio
async def test_dispatching_a_sent_announcement_is_rejected(seed):
    wedding_id = await seed.wedding()
    await seed.guest(wedding_id)
    dispatcher, store = build_dispatcher(RecordingSender())
    announcement = await create(store, wedding_id)
    await dispatcher.dispatch(wedding_id, announcement.uuid)

    with pytest.raises(AnnouncementStateError):
        await dispatcher.dispatch(wedding_id, announcement.uuid)
    with pytest.raises(AnnouncementStateError):
        await dispatcher.cancel(wedding_id, announcement.uuid)


@pytest.mark.asyncio
async def test_announcement_of_other_wedding_is_not_found(seed):
    wedding_id = await seed.wedding()
    other_wedding_id = await seed.wedding("Cleo & Dan")
    await seed.guest(wedding_id)
    dispatcher, store = build_dispatcher(RecordingSender())
    announcement = await create(store, wedding_id)

    with pytest.raises(NotFoundError):
        await dispatcher.dispatch(other_wedding_id, announcement.uuid)


@pytest.mark.asyncio
async def test_dispatch_due_sends_only_past_schedules(seed):
    wedding_id = await seed.wedding()
    await seed.guest(wedding_id)
    sender = RecordingSender()
    dispatcher, store = build_dispatcher(sender)
    due = await create(store, wedding_id, scheduled_at=datetime(2027, 6, 1, 8, 0, tzinfo=UTC))
    future = await create(store, wedding_id, scheduled_at=datetime(2027, 6, 3, 8, 0, tzinfo=UTC))
    assert due.status == AnnouncementStatus.SCHEDULED

    results = await dispatcher.dispatch_due(now=datetime(2027, 6, 2, 8, 0, tzinfo=UTC))

    assert len(results) == 1
    assert len(sender.sent) == 1
    assert (await store.get_stats(wedding_id, future.uuid)).status == AnnouncementStatus.SCHEDULED


@pytest.mark.asyncio
@pytest.mark.parametrize("batch_size", [19, 101])
async def test_batch_size_bounds(seed, batch_size):
    wedding_id = await seed.wedding()
    await seed.guest(wedding_id)
    store = SqlAnnouncementWriteModel()

    with pytest.raises(InputValidationError):
        await create(store, wedding_id, batch_size=batch_size)


@pytest.mark.asyncio
async def test_empty_selection_is_rejected(seed):
    wedding_id = await seed.wedding()
    store = SqlAnnouncementWriteModel()

    with pytest.raises(InputValidationError):
        await create(store, wedding_id, guest_ids=[])


@pytest.mark.asyncio
async def test_unknown_guest_is_rejected(seed):
    wedding_id = await seed.wedding()
    other_wedding_id = await seed.wedding("Cleo & Dan")
    stranger = await seed.guest(other_wedding_id)
    store = SqlAnnouncementWriteModel()

    with pytest.raises(NotFoundError):
        await create(store, wedding_id, guest_ids=[stranger])


@pytest.mark.asyncio
async def test_resume_is_refused_while_a_run_holds_the_lease(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 20)
    sender = SlowSender()
    dispatcher, store = build_dispatcher(sender)
    announcement = await create(store, wedding_id)

    running = asyncio.create_task(dispatcher.dispatch(wedding_id, announcement.uuid))
    await sender.started.wait()
    with pytest.raises(DispatchInProgressError):
        await dispatcher.dispatch(wedding_id, announcement.uuid, resume=True)
    result = await running

    assert result.sent == 20
    assert sorted(sender.destinations) == sorted(set(sender.destinations))


@pytest.mark.asyncio
async def test_overlapping_resumes_send_each_recipient_once(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 20)
    sender = SlowSender()
    dispatcher, store = build_dispatcher(sender)
    announcement = await create(store, wedding_id)
    # A run whose worker died after claiming, leaving the announcement sending
    await store.claim_for_dispatch(wedding_id, announcement.uuid)
    await store.release_lease(announcement.uuid)

    first = asyncio.create_task(dispatcher.dispatch(wedding_id, announcement.uuid, resume=True))
    await sender.started.wait()
    outcomes = await asyncio.gather(
        first,
        dispatcher.dispatch(wedding_id, announcement.uuid, resume=True),
        return_exceptions=True,
    )

    assert isinstance(outcomes[1], DispatchInProgressError)
    assert outcomes[0].sent == 20
    assert len(sender.destinations) == 20
    assert len(set(sender.destinations)) == 20


@pytest.mark.asyncio
async def test_expired_lease_can_be_taken_over(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 20)
    store = SqlAnnouncementWriteModel(lease_seconds=-60)
    announcement = await create(store, wedding_id)
    await store.claim_for_dispatch(wedding_id, announcement.uuid)

    dispatcher, _ = build_dispatcher(RecordingSender(), store=store)
    result = await dispatcher.dispatch(wedding_id, announcement.uuid, resume=True)

    assert result.sent == 20
    assert result.status == AnnouncementStatus.SENT


@pytest.mark.asyncio
async def test_cached_stats_are_fresh_after_a_crashed_run(seed):
    wedding_id = await seed.wedding()
    await seed_guests(seed, wedding_id, 45)
    cache = CacheNamespaceManager(InMemoryKeyValueStore())
    store = SqlAnnouncementWriteModel()
    announcement = await create(store, wedding_id)

    async def fetch():
        stats = await store.get_stats(wedding_id, announcement.uuid)
        return {"sent": stats.sent_count, "pending": stats.pending_count}

    async def read_stats():
        return await cache.cached(wedding_id, f"announcements:{announcement.uuid}:stats", fetch)

    sender = StatsReadingSender(read_on_call=21, crash_on_call=30, read_stats=read_stats)
    dispatcher, _ = build_dispatcher(sender, cache=cache, store=store)

    with pytest.raises(RuntimeError):
        await dispatcher.dispatch(wedding_id, announcement.uuid)

    assert sender.stats_seen["sent"] < 25
    assert await read_stats() == await fetch()
    assert (await read_stats())["pending"] > 0
