from lobby.models import Operation
from tests.fakes import seed


async def test_teardown_revokes_everyone_and_removes_resources(lifecycle, waitlist, teardown, store, voice, threads, venue):
    users = await seed(lifecycle, count=4)
    await lifecycle.toggle_spectators("u0")
    await waitlist.spectate("e1", "s1")
    rooms = store.get_voice_channels("e1")

    assert await teardown.run("e1", reason="test")

    revoked = {call[2] for call in voice.called("revoke_access")}
    assert revoked == set(users) | {"s1"}
    assert sorted(voice.deleted) == sorted(rooms)
    assert threads.threads["t1"]["archived"]
    assert not store.exists("e1")


async def test_teardown_runs_once(lifecycle, teardown, voice):
    await seed(lifecycle, count=4)

    assert await teardown.run("e1")
    assert not await teardown.run("e1")
    assert len(voice.called("delete_rooms")) == 1


async def test_teardown_skips_while_cleanup_is_active(lifecycle, teardown, store, voice):
    await seed(lifecycle, count=4)
    store.set_processing("e1", Operation.CLEANUP)

    assert not await teardown.run("e1")
    assert store.exists("e1")
    assert voice.called("delete_rooms") == []
    store.clear_processing("e1", Operation.CLEANUP)


async def test_teardown_continues_past_platform_failures(lifecycle, teardown, store, voice, threads):
    await seed(lifecycle, count=4)
    voice.fail_on.update({"revoke_access", "delete_rooms"})

    assert await teardown.run("e1")

    assert threads.threads["t1"]["archived"]
    assert not store.exists("e1")
    assert not store.is_user_in_any_event("u0")


async def test_teardown_purges_even_when_archiving_fails(lifecycle, teardown, store, threads):
    await seed(lifecycle, count=4)
    threads.fail_on.add("lock_and_archive")

    assert await teardown.run("e1")
    assert not store.exists("e1")


async def test_teardown_deletes_the_reping_message(lifecycle, teardown, venue):
    await seed(lifecycle, count=2)
    message_id = await lifecycle.reping("u0")

    await teardown.run("e1")

    assert message_id in venue.deleted


async def test_teardown_of_unstarted_session_touches_no_rooms(lifecycle, teardown, store, voice, threads):
    await seed(lifecycle, count=2)

    assert await teardown.run("e1")

    assert voice.calls == []
    assert threads.calls == []
    assert not store.exists("e1")
