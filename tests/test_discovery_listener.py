"""Tests for service info parsing, browser callbacks and handler dispatch."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from zeroconf import IPVersion, ServiceInfo, ServiceStateChange

from castbridge.discovery import listener as listener_module
from castbridge.discovery.listener import DiscoveryListener, parse_service_info
from castbridge.discovery.models import Address, DeviceKind

SERVICE = "_googlecast._tcp.local."
INSTANCE = "Google-Home-abc123._googlecast._tcp.local."
HOST = "abc123.local."


def service_info(name="Kitchen", model="Google Home", ips=("10.0.0.5",), port=8009, **extra):
    properties = {"id": "abc123", "fn": name, "md": model, **extra}
    return ServiceInfo(SERVICE, INSTANCE, port=port, properties=properties, server=HOST,
                       parsed_addresses=list(ips))


class StubServiceInfo:
    """Answers like AsyncServiceInfo, from a prepared ServiceInfo or nothing at all."""

    def __init__(self, resolved=None, in_cache=True):
        self.name = INSTANCE
        self.resolved = resolved
        self.in_cache = in_cache
        self.requested = False

    def load_from_cache(self, zc):
        return self.in_cache and self.resolved is not None

    async def async_request(self, zc, timeout):
        self.requested = True
        return self.resolved is not None

    @property
    def decoded_properties(self):
        return self.resolved.decoded_properties if self.resolved else {}

    def parsed_addresses(self, version=IPVersion.All):
        return self.resolved.parsed_addresses(version) if self.resolved else []

    @property
    def port(self):
        return self.resolved.port if self.resolved else None


async def settle(listener):
    while listener._tasks:
        await asyncio.gather(*list(listener._tasks))


# ================== PARSING ==================

def test_parse_full_service():
    record = parse_service_info(service_info(port=32190))
    assert record.friendly_name == "Kitchen"
    assert record.model == "Google Home"
    assert record.address == Address("10.0.0.5", 32190)
    assert record.kind is DeviceKind.DEVICE


def test_parse_group_by_model():
    record = parse_service_info(service_info(name="Downstairs", model="Google Cast Group"))
    assert record.kind is DeviceKind.GROUP
    assert record.id == "Downstairs"


def test_ipv4_address_preferred_over_ipv6():
    record = parse_service_info(service_info(ips=("fe80::1", "10.0.0.5")))
    assert record.address.host == "10.0.0.5"


def test_missing_port_defaults():
    record = parse_service_info(service_info(port=None))
    assert record.address == Address("10.0.0.5", 8009)


def test_missing_friendly_name_is_discarded():
    info = ServiceInfo(SERVICE, INSTANCE, port=8009, properties={"md": "Google Home"}, server=HOST,
                       parsed_addresses=["10.0.0.5"])
    assert parse_service_info(info) is None


def test_ipv6_only_is_discarded():
    assert parse_service_info(service_info(ips=("fe80::1",))) is None


# ================== HANDLERS ==================

def test_on_service_info_feeds_every_handler_and_isolates_failures():
    listener = DiscoveryListener({'interfaces': []})
    seen = []

    def broken(record):
        raise RuntimeError("boom")

    listener.add_handler(broken)
    listener.add_handler(seen.append)

    record = listener.on_service_info(service_info())
    assert seen == [record]
    assert listener.responses_seen == 1
    assert listener.records_emitted == 1


def test_unparseable_service_reaches_no_handler():
    listener = DiscoveryListener({'interfaces': []})
    seen = []
    listener.add_handler(seen.append)

    assert listener.on_service_info(service_info(ips=())) is None
    assert seen == []
    assert listener.records_emitted == 0


# ================== BROWSER CALLBACKS ==================

@pytest.mark.asyncio
async def test_added_service_is_resolved_from_cache(monkeypatch):
    stub = StubServiceInfo(service_info(), in_cache=True)
    monkeypatch.setattr(listener_module, "AsyncServiceInfo", lambda type_, name: stub)
    listener = DiscoveryListener({'interfaces': []})
    seen = []
    listener.add_handler(seen.append)

    listener._on_service_state_change(zeroconf=MagicMock(), service_type=SERVICE, name=INSTANCE,
                                      state_change=ServiceStateChange.Added)
    await settle(listener)

    assert [r.friendly_name for r in seen] == ["Kitchen"]
    assert stub.requested is False


@pytest.mark.asyncio
async def test_uncached_service_is_requested(monkeypatch):
    stub = StubServiceInfo(service_info(name="Office"), in_cache=False)
    monkeypatch.setattr(listener_module, "AsyncServiceInfo", lambda type_, name: stub)
    listener = DiscoveryListener({'interfaces': []})
    seen = []
    listener.add_handler(seen.append)

    listener._on_service_state_change(zeroconf=MagicMock(), service_type=SERVICE, name=INSTANCE,
                                      state_change=ServiceStateChange.Updated)
    await settle(listener)

    assert stub.requested is True
    assert [r.friendly_name for r in seen] == ["Office"]


@pytest.mark.asyncio
async def test_unresolved_and_removed_services_emit_nothing(monkeypatch):
    monkeypatch.setattr(listener_module, "AsyncServiceInfo", lambda type_, name: StubServiceInfo(None))
    listener = DiscoveryListener({'interfaces': []})
    seen = []
    listener.add_handler(seen.append)

    listener._on_service_state_change(zeroconf=MagicMock(), service_type=SERVICE, name=INSTANCE,
                                      state_change=ServiceStateChange.Added)
    listener._on_service_state_change(zeroconf=MagicMock(), service_type=SERVICE, name=INSTANCE,
                                      state_change=ServiceStateChange.Removed)
    await settle(listener)

    assert seen == []
    assert listener.responses_seen == 1


@pytest.mark.asyncio
async def test_scan_restarts_browser(monkeypatch):
    browsers = []

    def make_browser(zc, type_, handlers):
        browser = MagicMock()
        browser.async_cancel = AsyncMock()
        browsers.append((browser, type_, handlers))
        return browser

    monkeypatch.setattr(listener_module, "AsyncServiceBrowser", make_browser)
    listener = DiscoveryListener({'interfaces': []})
    listener.aiozc = MagicMock()

    await listener.scan()
    await listener.scan()

    assert len(browsers) == 2
    assert browsers[0][1] == SERVICE
    assert browsers[0][2] == [listener._on_service_state_change]
    browsers[0][0].async_cancel.assert_awaited_once()
    assert listener.browser is browsers[1][0]


@pytest.mark.asyncio
async def test_scan_before_start_is_ignored():
    listener = DiscoveryListener({'interfaces': []})
    await listener.scan()
    assert listener.browser is None
