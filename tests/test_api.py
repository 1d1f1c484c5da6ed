"""Tests for the HTTP control surface."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from conftest import ManualClock, cast_record
from castbridge.api.main_api import CastAPI
from castbridge.discovery.pairing import PairingResolver
from castbridge.media.audio_cache import AudioBufferCache
from castbridge.services.registry_sync import RegistrySync


@pytest.fixture
def registry(store):
    registry = RegistrySync(store)
    asyncio.run(registry.ensure_instance_objects())
    return registry


@pytest.fixture
def pairing():
    return PairingResolver()


@pytest.fixture
def audio_clock():
    return ManualClock(now=0.0)


@pytest.fixture
def audio_cache(audio_clock):
    return AudioBufferCache(60, audio_clock)


@pytest.fixture
def server():
    server = MagicMock()
    server.get_status.return_value = {"running": True}
    server.scan_network = AsyncMock()
    return server


@pytest.fixture
def client(registry, pairing, audio_cache, config, server):
    api = CastAPI(registry, pairing, audio_cache, config, server=server)
    return TestClient(api.app)


def add_device(registry, pairing, name, host, **kwargs):
    record = cast_record(name, host, **kwargs)
    pairing.add(record)
    asyncio.run(registry.upsert_device(record))


def test_list_devices_with_effective_address(client, registry, pairing):
    add_device(registry, pairing, "Kitchen", "10.0.0.5")
    add_device(registry, pairing, "Kitchen-Pair", "10.0.0.7", port=32190)

    response = client.get("/api/devices")

    assert response.status_code == 200
    devices = {d["id"]: d for d in response.json()}
    assert devices["Kitchen"]["effective_address"] == "10.0.0.7:32190"
    assert devices["Kitchen_Pair"]["kind"] == "group"

    pairs = client.get("/api/pairs").json()
    assert pairs == [{"device_id": "Kitchen", "group_name": "Kitchen-Pair", "target_address": "10.0.0.7:32190"}]


def test_broadcast_writes_unacknowledged_control_point(client, registry, pairing, store):
    add_device(registry, pairing, "Kitchen", "10.0.0.5")

    response = client.post("/api/devices/Kitchen/broadcast", json={"text": "Dinner"})

    assert response.status_code == 200
    assert response.json()["state_id"] == "castbridge.0.devices.Kitchen.broadcast"
    state = store.states["castbridge.0.devices.Kitchen.broadcast"]
    assert state.val == "Dinner" and state.ack is False


def test_volume_and_youtube_commands(client, registry, pairing, store):
    add_device(registry, pairing, "Kitchen", "10.0.0.5")

    assert client.post("/api/devices/Kitchen/volume", json={"level": 30}).status_code == 200
    assert client.post("/api/devices/Kitchen/youtube", json={"url": "https://youtu.be/dQw4w9WgXcQ"}).status_code == 200
    assert store.states["castbridge.0.devices.Kitchen.volume"].val == 30
    assert store.states["castbridge.0.devices.Kitchen.youtube_url"].val == "https://youtu.be/dQw4w9WgXcQ"

    assert client.post("/api/devices/Kitchen/volume", json={"level": 130}).status_code == 422


def test_unknown_device_is_404(client):
    assert client.post("/api/devices/Nowhere/broadcast", json={"text": "hi"}).status_code == 404
    assert client.get("/api/devices/Nowhere").status_code == 404


def test_broadcast_all(client, store):
    response = client.post("/api/broadcast", json={"text": "Everyone"})
    assert response.status_code == 200
    assert store.states["castbridge.0.broadcast_all"].val == "Everyone"


def test_audio_origin_serves_and_expires(client, audio_cache, audio_clock):
    audio_cache.put("Kitchen", b"ID3speech")

    response = client.get("/audio/Kitchen.mp3?t=123")
    assert response.status_code == 200
    assert response.headers["content-type"] == "audio/mpeg"
    assert response.headers["content-length"] == "9"
    assert response.content == b"ID3speech"

    audio_clock.advance(61)
    assert client.get("/audio/Kitchen.mp3").status_code == 404


def test_system_health_and_rescan(client, registry, pairing, server):
    add_device(registry, pairing, "Kitchen", "10.0.0.5")
    asyncio.run(registry.set_last_error("Kitchen", "launch", "failed"))

    health = client.get("/api/system/health").json()
    assert health["status"] == "healthy"
    assert health["devices"] == {"total": 1, "available": 1, "unavailable": 0}
    assert health["last_error"] == "Kitchen [launch]: failed"
    assert health["services"] == {"running": True}

    assert client.post("/api/system/rescan").status_code == 200
    server.scan_network.assert_awaited_once()
