import asyncio

import pytest

from lobby.errors import GuardRejection, OperationInProgress, Rejection, SessionNotFound
from lobby.models import LifecycleEvent, Operation, SessionStatus
from lobby.settings import LobbySettings
from tests.fakes import participant, seed


def _reason(excinfo) -> Rejection:
    return excinfo.value.reason


# ---------------------------
# Creation & sign-up
# ---------------------------
async def test_create_session_registers_creator(lifecycle, store, telemetry):
    snapshot = await lifecycle.create_session("e1", participant("u0"), "c1", "g1", countdown_minutes=10)

    assert snapshot.creator == "u0"
    assert snapshot.participant_ids == ["u0"]
    assert snapshot.status is SessionStatus.OPEN
    assert store.get_start_task("e1") is not None
    kind, data = telemetry.events[0]
    assert kind is LifecycleEvent.CREATED
    assert data.time_to_start == 10
    store.cancel_start_task("e1")


async def test_creator_already_in_a_session_cannot_create(lifecycle):
    await seed(lifecycle, "e1", count=2)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.create_session("e2", participant("u1"), "c1", "g1")
    assert _reason(excinfo) is Rejection.ALREADY_SIGNED_UP


async def test_nothing_is_accepted_while_shutting_down(lifecycle):
    await seed(lifecycle)
    lifecycle.stop_accepting()

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.create_session("e2", participant("x"), "c1", "g1")
    assert _reason(excinfo) is Rejection.SHUTTING_DOWN
    with pytest.raises(GuardRejection):
        await lifecycle.sign_up("e1", participant("u1"))


async def test_sign_up_rejections(lifecycle):
    await seed(lifecycle, "e1", count=2)
    await seed(lifecycle, "e2", creator="a0", prefix="a")

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.sign_up("e2", participant("u1"))
    assert _reason(excinfo) is Rejection.ALREADY_SIGNED_UP

    with pytest.raises(SessionNotFound):
        await lifecycle.sign_up("missing", participant("x"))


async def test_sign_out_and_creator_restriction(lifecycle, store, telemetry):
    await seed(lifecycle, count=3)

    await lifecycle.sign_out("e1", "u1")
    assert store.get_user_event_id("u1") is None
    assert LifecycleEvent.SIGNED_OUT in telemetry.kinds()

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.sign_out("e1", "u0")
    assert _reason(excinfo) is Rejection.CREATOR_CANNOT_SIGNOUT

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.sign_out("e1", "u1")
    assert _reason(excinfo) is Rejection.NOT_SIGNED_UP


async def test_select_role(lifecycle, store, updater, renderer):
    await seed(lifecycle, count=2)

    await lifecycle.select_role("e1", "u1", "slayer")
    await updater.flush_all()

    assert store.get_participants("e1")["u1"].role == "slayer"
    assert renderer.last("e1").participants[1].role == "slayer"
    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.select_role("e1", "stranger", "slayer")
    assert _reason(excinfo) is Rejection.NOT_SIGNED_UP


# ---------------------------
# Phases
# ---------------------------
async def test_filling_without_countdown_starts_immediately(lifecycle, store, threads, voice, telemetry, renderer):
    users = await seed(lifecycle, count=4)

    snapshot = store.snapshot("e1")
    assert snapshot.status is SessionStatus.STARTED
    assert snapshot.has_started
    assert snapshot.thread_id == "t1"
    assert len(snapshot.voice_channels) == 3
    assert threads.threads["t1"]["members"] == set(users)
    assert threads.threads["t1"]["messages"] == ["voice: v1,v2,v3"]
    assert all(voice.rooms[room] == set(users) for room in snapshot.voice_channels)
    assert telemetry.kinds().count(LifecycleEvent.STARTED) == 1
    assert renderer.last("e1").status is SessionStatus.STARTED


async def test_start_event_is_tracked_against_the_creator(lifecycle, telemetry):
    await seed(lifecycle, count=4)

    started = [data for kind, data in telemetry.events if kind is LifecycleEvent.STARTED]
    assert started[0].user_id == "u0"
    assert [p.user_id for p in started[0].participants] == ["u0", "u1", "u2", "u3"]


async def test_full_session_with_pending_countdown_is_finalizing(lifecycle, store):
    await seed(lifecycle, count=4, countdown_minutes=5)

    assert store.get_status("e1") is SessionStatus.FINALIZING
    assert not store.get_timer("e1").has_started

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.sign_out("e1", "u1")
    assert _reason(excinfo) is Rejection.EVENT_FINALIZING
    store.cancel_start_task("e1")


async def test_finalizing_reverts_to_open_when_someone_leaves(lifecycle, store):
    await seed(lifecycle, count=4, countdown_minutes=5)

    await lifecycle.kick("u0", "u3")

    assert store.get_status("e1") is SessionStatus.OPEN
    store.cancel_start_task("e1")


async def test_countdown_starts_a_full_session(lifecycle, store):
    # 0.001 minutes is 60ms of real time; the fake clock keeps the countdown pending.
    await seed(lifecycle, count=4, countdown_minutes=0.001)
    assert store.get_status("e1") is SessionStatus.FINALIZING

    await asyncio.sleep(0.15)

    assert store.get_status("e1") is SessionStatus.STARTED
    assert store.get_thread("e1") == "t1"
    assert store.get_start_task("e1") is None


async def test_countdown_without_enough_players_reopens(lifecycle, store):
    await seed(lifecycle, count=2, countdown_minutes=0.001)

    await asyncio.sleep(0.15)

    assert store.get_status("e1") is SessionStatus.OPEN
    assert store.get_timer("e1").duration is None
    assert not store.get_timer("e1").has_started

    # Without a countdown the next fill starts right away.
    await lifecycle.sign_up("e1", participant("u2"))
    await lifecycle.sign_up("e1", participant("u3"))
    assert store.get_status("e1") is SessionStatus.STARTED


async def test_force_start_guards(lifecycle, store):
    await seed(lifecycle, count=2)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.force_start("e1", "u1")
    assert _reason(excinfo) is Rejection.CREATOR_ONLY_START

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.force_start("e1", "u0")
    assert _reason(excinfo) is Rejection.NOT_ENOUGH_PARTICIPANTS
    assert store.get_status("e1") is SessionStatus.OPEN


async def test_force_start_rejected_after_start(lifecycle):
    await seed(lifecycle, count=4)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.force_start("e1", "u0")
    assert _reason(excinfo) is Rejection.EVENT_STARTED


async def test_start_is_refused_while_starting(lifecycle, store):
    await seed(lifecycle, count=2)
    store.set_processing("e1", Operation.STARTING)

    assert not await lifecycle.start("e1", "u0")
    assert store.get_status("e1") is SessionStatus.OPEN
    store.clear_processing("e1", Operation.STARTING)

    assert await lifecycle.start("e1", "u0")
    assert not await lifecycle.start("e1", "u0")


class TestWithMinimum:
    @pytest.fixture
    def settings(self):
        return LobbySettings(
            max_participants=4,
            min_participants=2,
            update_debounce_seconds=0.0,
            start_delay_seconds=0.0,
            shutdown_cleanup_delay_seconds=0.0,
        )

    async def test_creator_can_force_start_at_minimum(self, lifecycle, store, voice):
        await seed(lifecycle, count=2)

        await lifecycle.force_start("e1", "u0")

        assert store.get_status("e1") is SessionStatus.STARTED
        assert len(store.get_voice_channels("e1")) == 3

    async def test_force_start_is_rejected_during_another_operation(self, lifecycle, store):
        await seed(lifecycle, count=2)
        store.set_processing("e1", Operation.CANCELLING)

        with pytest.raises(OperationInProgress):
            await lifecycle.force_start("e1", "u0")
        store.clear_processing("e1", Operation.CANCELLING)


# ---------------------------
# Terminal transitions
# ---------------------------
async def test_cancel_by_creator_renders_then_purges(lifecycle, store, renderer, telemetry):
    await seed(lifecycle, count=2, countdown_minutes=10)
    task = store.get_start_task("e1")

    await lifecycle.cancel("e1", "u0")
    await asyncio.sleep(0)

    assert not store.exists("e1")
    assert not store.is_user_in_any_event("u1")
    assert renderer.last("e1").status is SessionStatus.CANCELLED
    assert task.cancelled()
    assert LifecycleEvent.CANCELLED in telemetry.kinds()


async def test_cancel_authorization(lifecycle, store):
    await seed(lifecycle, count=2)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.cancel("e1", "u1")
    assert _reason(excinfo) is Rejection.CREATOR_ONLY_CANCEL

    await lifecycle.cancel("e1", "mod", is_moderator=True)
    assert not store.exists("e1")


async def test_cancel_after_start_is_rejected(lifecycle):
    await seed(lifecycle, count=4)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.cancel("e1", "u0")
    assert _reason(excinfo) is Rejection.EVENT_STARTED


async def test_finish_tears_everything_down(lifecycle, store, threads, voice, renderer):
    await seed(lifecycle, count=4)
    rooms = store.get_voice_channels("e1")

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.finish("e1", "u1")
    assert _reason(excinfo) is Rejection.CREATOR_ONLY_FINISH

    await lifecycle.finish("e1", "u0")

    assert not store.exists("e1")
    assert sorted(voice.deleted) == sorted(rooms)
    assert threads.threads["t1"]["archived"]
    assert renderer.last("e1").status is SessionStatus.FINISHED
    # Everyone is free again.
    await lifecycle.create_session("e2", participant("u1"), "c1", "g1")


async def test_finish_before_start_is_rejected(lifecycle):
    await seed(lifecycle, count=2)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.finish("e1", "u0")
    assert _reason(excinfo) is Rejection.EVENT_NOT_STARTED


async def test_terminal_operation_rejected_while_another_is_in_flight(lifecycle, store):
    await seed(lifecycle, count=4)
    store.set_processing("e1", Operation.FINISHING)

    with pytest.raises(OperationInProgress) as excinfo:
        await lifecycle.finish("e1", "u0")
    assert excinfo.value.operation is Operation.FINISHING
    assert store.exists("e1")
    store.clear_processing("e1", Operation.FINISHING)


async def test_second_finish_sees_finishing_in_progress(lifecycle, store, renderer, telemetry):
    await seed(lifecycle, count=4)
    renderer.gate = asyncio.Event()

    first = asyncio.create_task(lifecycle.finish("e1", "u0"))
    await asyncio.sleep(0)
    assert store.is_processing("e1", Operation.FINISHING)

    with pytest.raises(OperationInProgress) as excinfo:
        await lifecycle.finish("e1", "u0")
    assert excinfo.value.operation is Operation.FINISHING

    renderer.gate.set()
    await first

    assert not store.exists("e1")
    assert telemetry.kinds().count(LifecycleEvent.FINISHED) == 1
    with pytest.raises(SessionNotFound):
        await lifecycle.finish("e1", "u0")


async def test_expire_skips_busy_sessions(lifecycle, store, renderer):
    await seed(lifecycle, count=2)
    store.set_processing("e1", Operation.STARTING)
    assert not await lifecycle.expire("e1")
    store.clear_processing("e1", Operation.STARTING)

    assert await lifecycle.expire("e1")
    assert renderer.last("e1").status is SessionStatus.EXPIRED
    assert not await lifecycle.expire("e1")


async def test_shutdown_session_overrides_everything_but_cleanup(lifecycle, store, telemetry):
    await seed(lifecycle, count=4)
    store.set_processing("e1", Operation.CLEANUP)
    assert not await lifecycle.shutdown_session("e1")
    store.clear_processing("e1", Operation.CLEANUP)

    assert await lifecycle.shutdown_session("e1")
    assert not store.exists("e1")
    assert LifecycleEvent.SHUTDOWN in telemetry.kinds()


# ---------------------------
# Creator commands
# ---------------------------
async def test_kick_before_start(lifecycle, store, telemetry):
    await seed(lifecycle, count=3)

    event_id = await lifecycle.kick("u0", "u2")

    assert event_id == "e1"
    assert not store.is_user_in_any_event("u2")
    kind, data = telemetry.events[-1]
    assert kind is LifecycleEvent.KICKED
    assert data.target_user_id == "u2"
    assert "u2" in [p.user_id for p in data.participants]


async def test_kick_rejections(lifecycle):
    await seed(lifecycle, count=2)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.kick("u1", "u0")
    assert _reason(excinfo) is Rejection.NO_EVENT_OWNED

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.kick("u0", "u0")
    assert _reason(excinfo) is Rejection.CANNOT_KICK_SELF

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.kick("u0", "stranger")
    assert _reason(excinfo) is Rejection.KICK_NOT_PARTICIPANT


async def test_kick_after_start_revokes_and_promotes(lifecycle, waitlist, store, voice, threads):
    await seed(lifecycle, count=4)
    await waitlist.join_queue("e1", "q1")
    rooms = store.get_voice_channels("e1")

    await lifecycle.kick("u0", "u2")

    assert "u2" not in voice.rooms[rooms[0]]
    assert "q1" in voice.rooms[rooms[0]]
    assert "q1" in store.get_participants("e1")
    assert "u2" not in threads.threads["t1"]["members"]
    assert "q1" in threads.threads["t1"]["members"]
    assert f"{LifecycleEvent.PROMOTED_FROM_QUEUE.value}:q1" in threads.threads["t1"]["messages"]


async def test_reping_posts_and_respects_cooldown(lifecycle, store, venue, clock, telemetry):
    await seed(lifecycle, count=2)

    first = await lifecycle.reping("u0")
    assert venue.messages[first] == ("c1", "@role 2 needed")
    assert store.get_reping_message("e1") == first
    assert LifecycleEvent.REPINGED in telemetry.kinds()

    clock.advance(60)
    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.reping("u0")
    assert _reason(excinfo) is Rejection.REPING_COOLDOWN
    assert excinfo.value.detail == "540s left"

    clock.advance(540)
    second = await lifecycle.reping("u0")
    assert first in venue.deleted
    assert store.get_reping_message("e1") == second


async def test_reping_rejected_when_full(lifecycle):
    await seed(lifecycle, count=4)

    with pytest.raises(GuardRejection) as excinfo:
        await lifecycle.reping("u0")
    assert _reason(excinfo) is Rejection.REPING_EVENT_FULL


async def test_reping_message_is_removed_once_full(lifecycle, store, venue):
    await seed(lifecycle, count=3)
    message_id = await lifecycle.reping("u0")

    await lifecycle.sign_up("e1", participant("u3"))

    assert message_id in venue.deleted
    assert store.get_reping_message("e1") is None


async def test_toggle_spectators_evicts_current_spectators(lifecycle, waitlist, store, voice, telemetry):
    await seed(lifecycle, count=4)
    assert await lifecycle.toggle_spectators("u0") is True
    await waitlist.spectate("e1", "s1")
    rooms = store.get_voice_channels("e1")
    assert "s1" in voice.rooms[rooms[0]]

    assert await lifecycle.toggle_spectators("u0") is False

    assert store.get_spectators("e1") == []
    assert "s1" not in voice.rooms[rooms[0]]
    assert telemetry.kinds()[-1] is LifecycleEvent.STOPPED_SPECTATING
