"""Tests for stereo pair correlation."""

import pytest

from conftest import cast_record
from castbridge.discovery.models import Address
from castbridge.discovery.pairing import PairingResolver

KITCHEN = cast_record("Kitchen", "10.0.0.5")
KITCHEN_PAIR = cast_record("Kitchen-Pair", "10.0.0.7", port=32190)


@pytest.mark.parametrize("order", [(KITCHEN, KITCHEN_PAIR), (KITCHEN_PAIR, KITCHEN)])
def test_name_correlation_is_order_independent(order):
    resolver = PairingResolver()
    for record in order:
        resolver.add(record)

    mapping = resolver.get_mapping("Kitchen")
    assert mapping is not None
    assert mapping.target_address == Address("10.0.0.7", 32190)
    assert mapping.group_name == "Kitchen-Pair"
    assert resolver.get_mapping("Kitchen_Pair") is None


@pytest.mark.parametrize("group_first", [True, False])
def test_stereo_pair_sharing_host_maps_member(group_first):
    resolver = PairingResolver()
    member = cast_record("Left Speaker", "10.0.0.20")
    group = cast_record("Wohnzimmer Paar", "10.0.0.20", port=32187)

    for record in ([group, member] if group_first else [member, group]):
        resolver.add(record)

    assert resolver.resolve_address("Left_Speaker", member.address) == Address("10.0.0.20", 32187)


def test_plain_group_on_same_host_is_not_a_pair():
    resolver = PairingResolver()
    resolver.add(cast_record("Downstairs", "10.0.0.5", model="Google Cast Group", port=32187))
    resolver.add(KITCHEN)

    assert resolver.get_mapping("Kitchen") is None
    assert resolver.resolve_address("Kitchen", KITCHEN.address) == KITCHEN.address


def test_id_suffix_rule():
    resolver = PairingResolver()
    resolver.add(cast_record("Bad", "10.0.0.30"))
    resolver.add(cast_record("Bad_Paar", "10.0.0.31", port=32100))

    assert resolver.get_mapping("Bad").target_address == Address("10.0.0.31", 32100)


def test_no_mapping_without_match():
    resolver = PairingResolver()
    resolver.add(KITCHEN)
    resolver.add(cast_record("Office-Pair", "10.0.0.9"))
    assert resolver.mappings == {}


def test_group_readvertised_on_new_address_retargets_mapping():
    resolver = PairingResolver()
    resolver.add(KITCHEN)
    resolver.add(KITCHEN_PAIR)
    resolver.add(cast_record("Kitchen-Pair", "10.0.0.8", port=32191))

    assert resolver.get_mapping("Kitchen").target_address == Address("10.0.0.8", 32191)


def test_listeners_notified_once_per_change():
    resolver = PairingResolver()
    seen = []
    resolver.add_listener(seen.append)

    resolver.add(KITCHEN)
    resolver.add(KITCHEN_PAIR)
    resolver.add(KITCHEN_PAIR)

    assert [m.source_device_id for m in seen] == ["Kitchen"]


def test_forget_group_drops_mappings_to_it():
    resolver = PairingResolver()
    resolver.add(KITCHEN)
    resolver.add(KITCHEN_PAIR)

    resolver.forget("Kitchen_Pair")
    assert resolver.get_mapping("Kitchen") is None

    # the device is still indexed, a returning group maps again
    resolver.add(KITCHEN_PAIR)
    assert resolver.get_mapping("Kitchen") is not None


def test_forget_device_and_clear():
    resolver = PairingResolver()
    resolver.add(KITCHEN)
    resolver.add(KITCHEN_PAIR)

    resolver.forget("Kitchen")
    assert resolver.get_mapping("Kitchen") is None

    resolver.add(KITCHEN)
    resolver.clear()
    assert resolver.mappings == {}
