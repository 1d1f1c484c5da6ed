"""
Name helpers shared by discovery, pairing and the registry
"""

import re

PAIR_TOKENS = ('pair', 'paar')
PAIR_ID_SUFFIXES = ('_Pair', '_Paar')

_ID_FORBIDDEN = re.compile(r'[^A-Za-z0-9]')
_NON_ALNUM = re.compile(r'[^a-z0-9]')


def sanitize_id(friendly_name: str) -> str:
    """Turn an advertised friendly name into a stable identifier-safe token"""
    return _ID_FORBIDDEN.sub('_', friendly_name.strip())


def normalize_name(friendly_name: str) -> str:
    """
    Reduce a friendly name to the key used for fuzzy pair correlation.
    "Living Room-Pair" and "Living Room" both become "livingroom".
    """
    key = _NON_ALNUM.sub('', friendly_name.lower())
    for token in PAIR_TOKENS:
        if key.endswith(token):
            return key[:-len(token)]
    return key


def has_pair_token(friendly_name: str) -> bool:
    lowered = friendly_name.lower()
    return any(token in lowered for token in PAIR_TOKENS)


def strip_pair_suffix(device_id: str) -> str:
    """Naive fallback: "Kitchen_Pair" -> "Kitchen". Returns the id unchanged otherwise."""
    for suffix in PAIR_ID_SUFFIXES:
        if device_id.endswith(suffix):
            return device_id[:-len(suffix)]
    return device_id
