import hashlib

from lobby.models import LifecycleEvent, ParticipantData, TelemetryEventData
from services.telemetry import TelemetryError, TelemetryService, build_event, hash_id


def _data(**extra):
    return TelemetryEventData(
        guild_id="g1",
        event_id="e1",
        user_id="u0",
        participants=[ParticipantData(user_id="u0", role="slayer"), ParticipantData(user_id="u1")],
        channel_id="c1",
        match_id="match-1",
        **extra,
    )


def test_ids_are_hashed_before_sending():
    event = build_event(LifecycleEvent.KICKED, _data(target_user_id="u1"))

    assert event.event == "user_kicked"
    assert event.user_id == hashlib.sha256(b"u0").hexdigest()
    assert event.guild_id == hash_id("g1")
    assert event.event_id == hash_id("e1")
    assert event.channel_id == hash_id("c1")
    assert event.target_user_id == hash_id("u1")
    assert [p.user_id for p in event.participants] == [hash_id("u0"), hash_id("u1")]
    assert event.participants[0].role == "slayer"
    assert event.match_id == "match-1"


def test_payload_is_json_ready():
    payload = build_event(LifecycleEvent.CREATED, _data(time_to_start=5)).model_dump(mode="json")

    assert payload["event"] == "event_created"
    assert payload["time_to_start"] == 5
    assert payload["target_user_id"] is None
    assert isinstance(payload["timestamp"], float)


async def test_disabled_without_url_or_token():
    service = TelemetryService("", "token")

    assert not service.enabled
    service.track(LifecycleEvent.CREATED, _data())
    assert service._pending == set()
    await service.close()


async def test_send_posts_the_hashed_event(monkeypatch):
    service = TelemetryService("https://telemetry.example/", "token")
    sent = []

    async def fake_post(payload):
        sent.append(payload)

    monkeypatch.setattr(service, "_post", fake_post)

    assert await service.send(LifecycleEvent.STARTED, _data())
    assert sent[0].event == "event_started"
    assert sent[0].user_id == hash_id("u0")
    assert service.base_url == "https://telemetry.example"
    await service.close()


async def test_failures_are_reported_not_raised(monkeypatch):
    service = TelemetryService("https://telemetry.example", "token")

    async def failing_post(payload):
        raise TelemetryError("Telemetry HTTP 500")

    monkeypatch.setattr(service, "_post", failing_post)

    assert not await service.send(LifecycleEvent.STARTED, _data())
    await service.close()


async def test_track_runs_in_the_background_and_close_drains(monkeypatch):
    service = TelemetryService("https://telemetry.example", "token")
    sent = []

    async def fake_post(payload):
        sent.append(payload.event)

    monkeypatch.setattr(service, "_post", fake_post)

    service.track(LifecycleEvent.SIGNED_UP, _data())
    await service.close()

    assert sent == ["user_sign_up"]
    assert not service.enabled
