"""
Unit tests for tools/player_identity.py and tools/local_storage.py —
persistent player identifiers.

The address lookup is always injected; nothing here touches the network.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tools.local_storage import PLAYER_ID_KEY, STORY_PAGE_KEY, LocalStorage
from tools.player_identity import IdentityResolutionError, _find_id_by_prefix, resolve_player_id
from tools.store import MemoryStore


def _lookup(address="10.0.0.7"):
    return AsyncMock(return_value=address)


class TestResolvePlayerId:

    def test_persisted_id_wins(self):
        local = LocalStorage()
        local.set(PLAYER_ID_KEY, "10.0.0.7-111")
        lookup = _lookup()

        result = asyncio.run(resolve_player_id(MemoryStore(), local, lookup))
        assert result == "10.0.0.7-111"
        lookup.assert_not_awaited()

    def test_active_record_matched_by_address(self):
        store = MemoryStore({"DND": {"active_players": {
            "10_0_0_7-222": {"id": "10.0.0.7-222", "character_data": {"name": "Elara"}},
        }}})
        local = LocalStorage()

        result = asyncio.run(resolve_player_id(store, local, _lookup()))
        assert result == "10.0.0.7-222"
        assert local.get(PLAYER_ID_KEY) == "10.0.0.7-222"

    def test_active_checked_before_pending(self):
        store = MemoryStore({"DND": {
            "pending_players": {"10_0_0_7-1": {"ip": "10.0.0.7-1", "accepted": False}},
            "active_players": {"10_0_0_7-2": {"id": "10.0.0.7-2", "character_data": {"name": "E"}}},
        }})
        assert asyncio.run(resolve_player_id(store, LocalStorage(), _lookup())) == "10.0.0.7-2"

    def test_pending_record_matched_by_address(self):
        store = MemoryStore({"DND": {"pending_players": {
            "10_0_0_7-333": {"ip": "10.0.0.7-333", "accepted": True},
        }}})
        assert asyncio.run(resolve_player_id(store, LocalStorage(), _lookup())) == "10.0.0.7-333"

    def test_new_id_is_minted_and_persisted(self):
        local = LocalStorage()
        result = asyncio.run(resolve_player_id(MemoryStore(), local, _lookup(), now_ms=lambda: 1700000000000))
        assert result == "10.0.0.7-1700000000000"
        assert local.get(PLAYER_ID_KEY) == result

    def test_other_addresses_do_not_match(self):
        store = MemoryStore({"DND": {"pending_players": {
            "10_0_0_8-1": {"ip": "10.0.0.8-1", "accepted": False},
        }}})
        result = asyncio.run(resolve_player_id(store, LocalStorage(), _lookup(), now_ms=lambda: 5))
        assert result == "10.0.0.7-5"

    def test_lookup_failure_raises(self):
        local = LocalStorage()
        lookup = AsyncMock(side_effect=RuntimeError("offline"))

        with pytest.raises(IdentityResolutionError, match="offline"):
            asyncio.run(resolve_player_id(MemoryStore(), local, lookup))
        assert local.get(PLAYER_ID_KEY) is None

    def test_identity_error_passes_through(self):
        lookup = AsyncMock(side_effect=IdentityResolutionError("Address lookup returned no ip."))
        with pytest.raises(IdentityResolutionError, match="no ip"):
            asyncio.run(resolve_player_id(MemoryStore(), LocalStorage(), lookup))


class TestFindIdByPrefix:

    def test_ignores_malformed_records(self):
        players = {"a": None, "b": "text", "c": {"id": 5}, "d": {"ip": "1.1.1.1-9"}}
        assert _find_id_by_prefix(players, "1.1.1.1") == "1.1.1.1-9"

    def test_non_dict_snapshot(self):
        assert _find_id_by_prefix(None, "1.1.1.1") is None


class TestLocalStorage:

    def test_memory_only(self):
        local = LocalStorage()
        local.set(STORY_PAGE_KEY, 3)
        assert local.get(STORY_PAGE_KEY) == "3"
        local.remove(STORY_PAGE_KEY)
        assert local.get(STORY_PAGE_KEY) is None

    def test_persists_to_profile_file(self, tmp_path):
        local = LocalStorage.for_profile(str(tmp_path / "profiles"), "alice")
        local.set(PLAYER_ID_KEY, "10.0.0.7-1")

        reopened = LocalStorage.for_profile(str(tmp_path / "profiles"), "alice")
        assert reopened.get(PLAYER_ID_KEY) == "10.0.0.7-1"
        assert LocalStorage.for_profile(str(tmp_path / "profiles"), "bob").get(PLAYER_ID_KEY) is None

    def test_clear(self, tmp_path):
        path = str(tmp_path / "p.json")
        local = LocalStorage(path)
        local.set(PLAYER_ID_KEY, "x")
        local.clear()
        assert LocalStorage(path).get(PLAYER_ID_KEY) is None

    def test_corrupt_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "p.json"
        path.write_text("{not json", encoding="utf-8")
        assert LocalStorage(str(path)).get(PLAYER_ID_KEY) is None
