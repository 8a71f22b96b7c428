import asyncio
from datetime import timedelta

import pytest

from officehours.engine import HelpQueue, QueueDisplay, UnsafeRenderError
from officehours.engine.errors import (
    AlreadyClosedError,
    AlreadyInQueueError,
    AlreadyOpenError,
    AlreadySubscribedError,
    EmptyQueueError,
    NoPermissionError,
    NotSubscribedError,
    QueueNotOpenError,
    QueuePausedError,
)
from officehours.extensions.base import ExtensionFanout
from officehours.models import QueueBackup, WaitingEntryBackup
from tests.fakes import MATH, START

HELPER = 10
OTHER_HELPER = 11


@pytest.fixture
def queue(transport, notifier, clock, recorder):
    display = QueueDisplay(MATH.name, MATH.channel_id, transport)
    return HelpQueue(
        MATH,
        display,
        notifier,
        ExtensionFanout([recorder]),
        clock,
        authorized_helper_ids={HELPER, OTHER_HELPER},
    )


@pytest.mark.asyncio
async def test_open_and_close(queue, recorder):
    await queue.open(HELPER)
    assert queue.is_open
    assert queue.host_ids == {HELPER}

    await queue.close(HELPER)
    assert not queue.is_open
    assert queue.host_ids == frozenset()
    assert recorder.names() == ["on_queue_open", "on_queue_close"]


@pytest.mark.asyncio
async def test_double_open_and_double_close_are_rejected(queue, transport):
    await queue.open(HELPER)
    sent_before = len(transport.sent) + len(transport.edits)

    with pytest.raises(AlreadyOpenError):
        await queue.open(OTHER_HELPER)
    assert queue.host_ids == {HELPER}
    assert len(transport.sent) + len(transport.edits) == sent_before

    await queue.close(HELPER)
    with pytest.raises(AlreadyClosedError):
        await queue.close(HELPER)
    assert not queue.is_open


@pytest.mark.asyncio
async def test_close_keeps_waiting_participants(queue):
    await queue.open(HELPER)
    await queue.enqueue(1)

    await queue.close(HELPER)

    assert [e.participant_id for e in queue.waiting] == [1]


@pytest.mark.asyncio
async def test_enqueue_is_fifo(queue, clock):
    await queue.open(HELPER)
    for pid in (1, 2, 3):
        clock.advance(seconds=1)
        await queue.enqueue(pid)

    served = [(await queue.dequeue_with_helper(HELPER)).participant_id for _ in range(3)]

    assert served == [1, 2, 3]


@pytest.mark.asyncio
async def test_enqueue_rejections(queue):
    with pytest.raises(QueueNotOpenError):
        await queue.enqueue(1)

    await queue.open(HELPER)
    await queue.enqueue(1)
    with pytest.raises(AlreadyInQueueError):
        await queue.enqueue(1)
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_first_entry_notifies_helpers_and_subscribers_once(queue, notifier):
    queue.add_to_notif_group(50)
    await queue.open(HELPER)

    await queue.enqueue(1, "Alice")
    await queue.enqueue(2, "Bob")

    assert sorted(notifier.recipients()) == [HELPER, OTHER_HELPER, 50]
    assert all("Alice" in content for _, content in notifier.direct)


@pytest.mark.asyncio
async def test_notification_failure_does_not_block_enqueue(queue, notifier):
    notifier.unreachable.add(HELPER)
    await queue.open(HELPER)

    entry = await queue.enqueue(1)

    assert entry.participant_id == 1
    assert notifier.recipients() == [OTHER_HELPER]


@pytest.mark.asyncio
async def test_dequeue_requires_authorization(queue):
    await queue.open(HELPER)
    await queue.enqueue(1)

    with pytest.raises(NoPermissionError):
        await queue.dequeue_with_helper(12)
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_dequeue_empty_queue(queue):
    await queue.open(HELPER)

    with pytest.raises(EmptyQueueError):
        await queue.dequeue_with_helper(HELPER)


@pytest.mark.asyncio
async def test_dequeue_specific_participant_out_of_order(queue, recorder):
    await queue.open(HELPER)
    for pid in (1, 2, 3):
        await queue.enqueue(pid)

    entry = await queue.dequeue_with_helper(HELPER, target_participant_id=2)

    assert entry.participant_id == 2
    assert entry.up_next
    assert [e.participant_id for e in queue.waiting] == [1, 3]
    assert recorder.args_of("on_dequeue")[0][1].participant_id == 2


@pytest.mark.asyncio
async def test_dequeue_missing_target(queue):
    await queue.open(HELPER)
    await queue.enqueue(1)

    with pytest.raises(EmptyQueueError):
        await queue.dequeue_with_helper(HELPER, target_participant_id=99)
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_remove_participant_is_noop_when_absent(queue, transport):
    await queue.open(HELPER)
    renders = len(transport.sent) + len(transport.edits)

    assert await queue.remove_participant(1) is None
    assert len(transport.sent) + len(transport.edits) == renders


@pytest.mark.asyncio
async def test_remove_participant_and_remove_all(queue, recorder):
    await queue.open(HELPER)
    for pid in (1, 2, 3):
        await queue.enqueue(pid)

    removed = await queue.remove_participant(2)
    assert removed.participant_id == 2

    cleared = await queue.remove_all()
    assert [e.participant_id for e in cleared] == [1, 3]
    assert len(queue) == 0
    assert "on_student_remove" in recorder.names()
    assert len(recorder.args_of("on_remove_all_students")[0][1]) == 2


def test_notification_group(queue):
    queue.add_to_notif_group(5)
    with pytest.raises(AlreadySubscribedError):
        queue.add_to_notif_group(5)

    queue.remove_from_notif_group(5)
    with pytest.raises(NotSubscribedError):
        queue.remove_from_notif_group(5)


@pytest.mark.asyncio
async def test_open_with_notify_messages_and_clears_subscribers(queue, notifier):
    queue.add_to_notif_group(5)
    queue.add_to_notif_group(OTHER_HELPER)

    await queue.open(HELPER, notify=True)

    assert notifier.recipients() == [5]
    assert queue.notify_subscribers == {OTHER_HELPER}


@pytest.mark.asyncio
async def test_open_without_notify_keeps_subscribers(queue, notifier):
    queue.add_to_notif_group(5)

    await queue.open(HELPER)

    assert notifier.direct == []
    assert queue.notify_subscribers == {5}


@pytest.mark.asyncio
async def test_paused_hosts_reject_new_participants(queue):
    await queue.open(HELPER)
    queue.set_host_paused(HELPER, True)

    with pytest.raises(QueuePausedError):
        await queue.enqueue(1)

    queue.add_host(OTHER_HELPER)
    await queue.enqueue(1)
    assert len(queue) == 1


@pytest.mark.asyncio
async def test_render_failure_is_kept_for_the_caller(queue, transport):
    await queue.open(HELPER)
    transport.post(MATH.channel_id, author_id=7)

    await queue.enqueue(1)

    assert len(queue) == 1
    error = queue.take_render_error()
    assert isinstance(error, UnsafeRenderError)
    assert queue.take_render_error() is None

    with pytest.raises(UnsafeRenderError):
        await queue.trigger_render()

    await queue.cleanup_channel()
    await queue.trigger_render()
    assert transport.messages(MATH.channel_id)[-1].payload.participant_names == ("<@1>",)


@pytest.mark.asyncio
async def test_transport_failure_during_render_keeps_the_mutation(
    queue, transport, monkeypatch, caplog
):
    await queue.open(HELPER)

    async def broken_fetch(channel_id, limit):
        raise RuntimeError("gateway went away")

    monkeypatch.setattr(transport, "fetch_recent_messages", broken_fetch)

    entry = await queue.enqueue(1)

    assert entry.participant_id == 1
    assert queue.has_participant(1)
    assert queue.take_render_error() is None
    assert "Failed to render queue Math" in caplog.text


@pytest.mark.asyncio
async def test_failed_auto_clear_is_logged(queue, monkeypatch, caplog):
    async def broken_remove_all():
        raise RuntimeError("storage down")

    monkeypatch.setattr(queue, "remove_all", broken_remove_all)
    queue.set_auto_clear(timedelta(seconds=0))
    task = queue._auto_clear_task

    await asyncio.wait([task])
    await asyncio.sleep(0)

    assert "Auto clear of Math failed: RuntimeError: storage down" in caplog.text


@pytest.mark.asyncio
async def test_view_model(queue):
    await queue.open(HELPER)
    await queue.enqueue(1, "Alice")
    await queue.enqueue(2)

    view_model = queue.view_model()

    assert view_model.queue_id == MATH.queue_id
    assert view_model.is_open
    assert view_model.participant_names == ("Alice", "<@2>")
    assert view_model.helper_ids == (HELPER,)


def test_restore_orders_by_wait_start(queue):
    later = START.replace(hour=10)
    queue.restore(
        QueueBackup(
            queue_id=MATH.queue_id,
            name=MATH.name,
            waiting=[
                WaitingEntryBackup(participant_id=2, wait_start=later),
                WaitingEntryBackup(participant_id=1, wait_start=START),
            ],
            notify_subscribers=[7],
        )
    )

    assert [e.participant_id for e in queue.waiting] == [1, 2]
    assert queue.waiting[1].wait_start == later
    assert queue.notify_subscribers == {7}
