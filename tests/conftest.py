import pytest

from lobby.lifecycle import SessionLifecycle
from lobby.resources import SessionResources
from lobby.settings import LobbySettings
from lobby.store import SessionStore
from lobby.teardown import TeardownOrchestrator
from lobby.updates import AnnouncementUpdater
from lobby.waitlist import WaitlistActions
from tests.fakes import FakeClock, FakeRenderer, FakeTelemetry, FakeThreads, FakeVenue, FakeVoiceRooms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return LobbySettings(
        max_participants=4,
        max_spectators=2,
        update_debounce_seconds=0.0,
        reping_cooldown_seconds=600.0,
        start_delay_seconds=0.0,
        shutdown_cleanup_delay_seconds=0.0,
        shutdown_poll_seconds=0.01,
    )


@pytest.fixture
def store(settings):
    return SessionStore(settings)


@pytest.fixture
def venue():
    return FakeVenue()


@pytest.fixture
def threads():
    return FakeThreads()


@pytest.fixture
def voice():
    return FakeVoiceRooms()


@pytest.fixture
def renderer():
    return FakeRenderer()


@pytest.fixture
def telemetry():
    return FakeTelemetry()


@pytest.fixture
async def updater(store, renderer):
    updater = AnnouncementUpdater(store, renderer, debounce_seconds=0.0)
    yield updater
    await updater.close()


@pytest.fixture
def resources(store, threads, voice, renderer):
    return SessionResources(store, threads, voice, renderer)


@pytest.fixture
def teardown(store, threads, voice, venue):
    return TeardownOrchestrator(store, threads, voice, venue)


@pytest.fixture
def lifecycle(store, updater, resources, teardown, venue, telemetry, clock):
    return SessionLifecycle(store, updater, resources, teardown, venue, telemetry=telemetry, clock=clock)


@pytest.fixture
def waitlist(lifecycle):
    return WaitlistActions(lifecycle)
