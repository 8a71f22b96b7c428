import pytest
import pytest_asyncio

from officehours.models import WorkspaceSettings
from tests.fakes import MATH, PHYSICS, build_server

HELPER = 10
SESSION_CHANNEL = 500
LOBBY = 501


@pytest_asyncio.fixture
async def server(transport, notifier, clock, recorder):
    server = await build_server(
        transport,
        notifier,
        clock,
        authorizations={MATH.queue_id: {HELPER}, PHYSICS.queue_id: {HELPER}},
        extensions=[recorder],
        settings=WorkspaceSettings(workspace_id=42, after_session_message="Thanks for coming!"),
    )
    await server.open_all_openable_queues(HELPER)
    await server.on_participant_join_session(HELPER, SESSION_CHANNEL)
    return server


async def serve(server, clock, *participant_ids):
    for pid in participant_ids:
        clock.advance(seconds=1)
        await server.enqueue(MATH.queue_id, pid)
    for _ in participant_ids:
        await server.serve_next(HELPER)


@pytest.mark.asyncio
async def test_served_participant_opens_a_session(server, clock, recorder):
    await serve(server, clock, 1)
    entry = server.helpers[HELPER].helped_list[0]
    assert entry.up_next

    clock.advance(seconds=30)
    await server.on_participant_join_session(1, SESSION_CHANNEL)

    assert not entry.up_next
    (session,) = server.stats.open_sessions(1)
    assert session.helper_id == HELPER
    assert session.queue_name == "Math"
    assert session.wait_time_ms == 30 * 1000
    (args,) = recorder.args_of("on_student_join_session")
    assert args[2] == frozenset({HELPER})


@pytest.mark.asyncio
async def test_unserved_member_opens_nothing(server):
    await server.on_participant_join_session(7, SESSION_CHANNEL)

    assert server.stats.open_sessions(7) == ()


@pytest.mark.asyncio
async def test_session_needs_a_hosting_helper_in_the_channel(server, clock):
    await serve(server, clock, 1)

    await server.on_participant_join_session(1, LOBBY)
    assert server.stats.open_sessions(1) == ()
    assert server.helpers[HELPER].helped_list[0].up_next

    await server.on_participant_join_session(1, SESSION_CHANNEL)
    assert len(server.stats.open_sessions(1)) == 1


@pytest.mark.asyncio
async def test_leaving_closes_the_session(server, clock, notifier, recorder):
    await serve(server, clock, 1)
    await server.on_participant_join_session(1, SESSION_CHANNEL)
    clock.advance(minutes=10)
    notifier.direct.clear()

    await server.on_participant_leave_session(1)

    assert server.stats.open_sessions(1) == ()
    assert notifier.direct == [(1, "Thanks for coming!")]
    (args,) = recorder.args_of("on_student_leave_session")
    assert args[1] == 1
    (session,) = args[2]
    assert session.session_end == clock.now

    finished = await server.close_all_closable_queues(HELPER)
    assert finished.attendance.active_time_ms == 10 * 60 * 1000


@pytest.mark.asyncio
async def test_leaving_without_a_session_sends_nothing(server, notifier):
    notifier.direct.clear()

    await server.on_participant_join_session(7, SESSION_CHANNEL)
    await server.on_participant_leave_session(7)
    await server.on_participant_leave_session(8)

    assert notifier.direct == []


@pytest.mark.asyncio
async def test_active_time_counts_overlapping_participants_once(server, clock):
    await serve(server, clock, 1, 2)
    await server.on_participant_join_session(1, SESSION_CHANNEL)
    await server.on_participant_join_session(2, SESSION_CHANNEL)

    clock.advance(minutes=10)
    await server.on_participant_leave_session(1)
    clock.advance(minutes=5)
    await server.on_participant_leave_session(2)
    clock.advance(minutes=20)

    finished = await server.close_all_closable_queues(HELPER)

    assert finished.attendance.active_time_ms == 15 * 60 * 1000
    assert finished.attendance.idle_ms == finished.attendance.session_ms - 15 * 60 * 1000


@pytest.mark.asyncio
async def test_session_still_open_at_stop_is_counted(server, clock):
    await serve(server, clock, 1)
    await server.on_participant_join_session(1, SESSION_CHANNEL)
    clock.advance(minutes=7)

    finished = await server.close_all_closable_queues(HELPER)

    assert finished.attendance.active_time_ms == 7 * 60 * 1000


@pytest.mark.asyncio
async def test_leave_in_one_channel_keeps_other_helpers_active(transport, notifier, clock):
    other_helper, other_channel = 11, 600
    server = await build_server(
        transport,
        notifier,
        clock,
        authorizations={MATH.queue_id: {HELPER}, PHYSICS.queue_id: {other_helper}},
    )
    for helper_id, channel_id in ((HELPER, SESSION_CHANNEL), (other_helper, other_channel)):
        await server.open_all_openable_queues(helper_id)
        await server.on_participant_join_session(helper_id, channel_id)
    await server.enqueue(MATH.queue_id, 1)
    await server.enqueue(PHYSICS.queue_id, 2)
    await server.serve_next(HELPER)
    await server.serve_next(other_helper)
    await server.on_participant_join_session(1, SESSION_CHANNEL)
    await server.on_participant_join_session(2, other_channel)

    clock.advance(minutes=10)
    await server.on_participant_leave_session(1)
    clock.advance(minutes=90)
    await server.on_participant_leave_session(2)

    finished = await server.close_all_closable_queues(other_helper)
    assert finished.attendance.active_time_ms == 100 * 60 * 1000
    finished = await server.close_all_closable_queues(HELPER)
    assert finished.attendance.active_time_ms == 10 * 60 * 1000
