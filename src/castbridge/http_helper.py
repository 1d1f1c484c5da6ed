# HTTP Helper for outbound requests and the media origin address
# Session factory for speech engines plus local address detection for receivers

import aiohttp
import ipaddress
import logging
import socket
from typing import Optional

import ifaddr

logger = logging.getLogger(__name__)

def create_http_session(timeout_seconds: float = 10) -> aiohttp.ClientSession:
    """
    Create properly configured aiohttp session for short external requests
    Prevents connection leaks with proper cleanup and limits
    """
    connector = aiohttp.TCPConnector(
        limit=10,
        limit_per_host=4,
        force_close=True,
        enable_cleanup_closed=True
    )

    return aiohttp.ClientSession(
        connector=connector,
        timeout=aiohttp.ClientTimeout(total=timeout_seconds)
    )

def get_local_ip(peer_host: Optional[str] = None) -> Optional[str]:
    """
    Guess the local IPv4 address receivers can reach us on.
    Prefers the adapter on the same subnet as peer_host, then the default route.
    """
    if peer_host:
        try:
            peer = ipaddress.ip_address(peer_host)
        except ValueError:
            peer = None
        if peer is not None:
            for adapter in ifaddr.get_adapters():
                for adapter_ip in adapter.ips:
                    if not isinstance(adapter_ip.ip, str):
                        continue
                    network = ipaddress.ip_network(f"{adapter_ip.ip}/{adapter_ip.network_prefix}", strict=False)
                    if peer in network:
                        return adapter_ip.ip

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent, connect() only selects the outbound interface
        sock.connect(('8.8.8.8', 53))
        return sock.getsockname()[0]
    except OSError as e:
        logger.warning(f"Could not determine local address: {e}")
        return None
    finally:
        sock.close()
