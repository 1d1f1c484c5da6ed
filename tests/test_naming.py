"""Tests for id derivation, name normalization and classification."""

from castbridge.discovery.models import Address, CastRecord, DeviceKind
from castbridge.discovery.naming import has_pair_token, normalize_name, sanitize_id, strip_pair_suffix


def test_sanitize_id_replaces_non_alphanumerics():
    assert sanitize_id("Living Room-Pair") == "Living_Room_Pair"
    assert sanitize_id("Küche") == "K_che"
    assert sanitize_id("Office") == "Office"


def test_same_name_gives_same_id():
    first = CastRecord("Kitchen Speaker", "Google Home", Address("10.0.0.5"))
    second = CastRecord("Kitchen Speaker", "Google Nest Mini", Address("10.0.0.9"))
    assert first.id == second.id == "Kitchen_Speaker"


def test_normalize_name_strips_pair_suffix_and_punctuation():
    assert normalize_name("Living Room-Pair") == "livingroom"
    assert normalize_name("Living Room") == "livingroom"
    assert normalize_name("Wohnzimmer Paar") == "wohnzimmer"
    assert normalize_name("Bath_Room 2") == "bathroom2"


def test_pair_token_is_case_insensitive_substring():
    assert has_pair_token("Kitchen-PAIR")
    assert has_pair_token("Paar Bad")
    assert not has_pair_token("Kitchen")


def test_strip_pair_suffix_only_touches_literal_suffix():
    assert strip_pair_suffix("Kitchen_Pair") == "Kitchen"
    assert strip_pair_suffix("Bad_Paar") == "Bad"
    assert strip_pair_suffix("Kitchen_pair") == "Kitchen_pair"
    assert strip_pair_suffix("Kitchen") == "Kitchen"


def test_classification():
    group = CastRecord("Downstairs", "Google Cast Group", Address("10.0.0.3", 32187))
    pair = CastRecord("Kitchen-Pair", "Google Home", Address("10.0.0.5", 32190))
    device = CastRecord("Kitchen", "Google Home", Address("10.0.0.5"))

    assert group.kind is DeviceKind.GROUP and not group.is_stereo_pair
    assert pair.kind is DeviceKind.GROUP and pair.is_stereo_pair
    assert device.kind is DeviceKind.DEVICE
    assert str(pair.address) == "10.0.0.5:32190"
