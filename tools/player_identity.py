"""
Player Identity Resolution — a stable identifier per client profile.

Order of resolution:
    1. the identifier persisted in local storage
    2. an existing active record, then pending record, whose identifier
       starts with this client's public address (local storage was lost)
    3. a new `"<address>-<epoch ms>"` identifier

The result is always persisted locally. Address-prefix matching is a
heuristic for reconnecting, not authentication.
"""

import os
import time
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import aiohttp

from tools.local_storage import LocalStorage, PLAYER_ID_KEY
from tools.store import KeyedMutableStore, ACTIVE_PLAYERS, PENDING_PLAYERS

logger = logging.getLogger("PlayerIdentity")

DEFAULT_IP_LOOKUP_URL = "https://api.ipify.org?format=json"

IpLookup = Callable[[], Awaitable[str]]


class IdentityResolutionError(Exception):
    """Identity could not be resolved. Fatal for the player view; not retried."""


async def fetch_public_ip(url: Optional[str] = None, timeout: int = 10) -> str:
    """GET the address-echo endpoint and return its `ip` field."""
    url = url or os.getenv("IP_LOOKUP_URL", DEFAULT_IP_LOOKUP_URL)
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, timeout=aiohttp.ClientTimeout(total=timeout)) as resp:
                if resp.status >= 400:
                    raise IdentityResolutionError(
                        "Failed to fetch IP address to create a persistent ID."
                    )
                data = await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        raise IdentityResolutionError(
            "Failed to fetch IP address to create a persistent ID."
        ) from e

    ip = (data or {}).get("ip") if isinstance(data, dict) else None
    if not isinstance(ip, str) or not ip:
        raise IdentityResolutionError("Address lookup returned no ip.")
    return ip


def _find_id_by_prefix(players: Any, address: str) -> Optional[str]:
    """First record whose stored identifier (`id` or `ip`) starts with address."""
    if not isinstance(players, dict):
        return None
    for record in players.values():
        if not isinstance(record, dict):
            continue
        unique_id = record.get("id") or record.get("ip")
        if isinstance(unique_id, str) and unique_id.startswith(address):
            return unique_id
    return None


async def resolve_player_id(
    store: KeyedMutableStore,
    local_storage: LocalStorage,
    lookup_ip: Optional[IpLookup] = None,
    now_ms: Optional[Callable[[], int]] = None,
) -> str:
    """Return this client's persistent player identifier.

    Args:
        store: Shared store to search for a returning player's record.
        local_storage: This client's persisted key/value strings.
        lookup_ip: Async callable returning the public address.
        now_ms: Clock used when minting a new identifier.

    Raises:
        IdentityResolutionError: the address lookup (or the record scan) failed.
    """
    stored = local_storage.get(PLAYER_ID_KEY)
    if stored:
        logger.debug(f"Using persisted player id {stored}")
        return stored

    lookup_ip = lookup_ip or fetch_public_ip
    try:
        address = await lookup_ip()
        found = _find_id_by_prefix(await store.get(ACTIVE_PLAYERS), address) or \
            _find_id_by_prefix(await store.get(PENDING_PLAYERS), address)
    except IdentityResolutionError:
        raise
    except Exception as e:
        logger.error(f"Identity resolution failed: {e}")
        raise IdentityResolutionError(str(e) or "An unknown error occurred.") from e

    if found:
        logger.info(f"Returning player matched by address: {found}")
        player_id = found
    else:
        clock = now_ms or (lambda: int(time.time() * 1000))
        player_id = f"{address}-{clock()}"
        logger.info(f"New player id minted: {player_id}")

    local_storage.set(PLAYER_ID_KEY, player_id)
    return player_id
