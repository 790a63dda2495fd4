"""
Tests for tools/player_lifecycle.py — status driven purely by the records
at DND/active_players/<sid> and DND/pending_players/<sid>.

The DM's writes are performed directly against the store here, the same
writes tools/player_manager.py makes.
"""

import asyncio

from agents.tools.store_errors import StoreConnectionError
from models.players import PendingPlayer
from tools.player_lifecycle import (
    BACKSTORY_SAVE_FAILED,
    NO_CONNECTION,
    PlayerLifecycle,
    PlayerStatus,
    derive_pending_status,
)
from tools.store import MemoryStore

PLAYER_ID = "10.0.0.7-1700000000000"
SID = "10_0_0_7-1700000000000"
PENDING = f"DND/pending_players/{SID}"
ACTIVE = f"DND/active_players/{SID}"


class FailingUpdateStore(MemoryStore):
    async def update(self, path, values):
        raise StoreConnectionError("connection lost")


async def _finalize(store, sheet):
    await store.update("DND", {
        f"pending_players/{SID}": None,
        f"active_players/{SID}": {"id": PLAYER_ID, "character_data": sheet},
    })


class TestDerivePendingStatus:

    def test_new_record(self):
        assert derive_pending_status(PendingPlayer(ip=PLAYER_ID)) == PlayerStatus.PENDING_APPROVAL

    def test_accepted(self):
        assert derive_pending_status(PendingPlayer(ip=PLAYER_ID, accepted=True)) == PlayerStatus.NEEDS_BACKSTORY

    def test_backstory_outranks_approval(self):
        record = PendingPlayer(ip=PLAYER_ID, accepted=False, backstory="Raised by wolves.")
        assert derive_pending_status(record) == PlayerStatus.WAITING_FOR_SHEET


class TestLifecycle:

    def test_fresh_id_creates_pending_record(self):
        store = MemoryStore()
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            assert await store.get(PENDING) == {"ip": PLAYER_ID, "accepted": False}
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.PENDING_APPROVAL
        assert lifecycle.sanitized_id == SID

    def test_full_walk_to_in_game(self, sample_sheet):
        store = MemoryStore()
        statuses = []
        lifecycle = PlayerLifecycle(store, on_change=lambda lc: statuses.append(lc.status))

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()

            await store.update(PENDING, {"accepted": True})
            await store.settle()
            assert lifecycle.status == PlayerStatus.NEEDS_BACKSTORY

            assert await lifecycle.save_backstory("  Raised by wolves.  ") is True
            await store.settle()
            assert lifecycle.status == PlayerStatus.WAITING_FOR_SHEET
            assert (await store.get(PENDING))["backstory"] == "Raised by wolves."

            await _finalize(store, sample_sheet)
            await store.settle()

            players = await store.get("DND")
            assert "pending_players" not in players
            assert list(players["active_players"]) == [SID]
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.IN_GAME
        assert lifecycle.character.name == "Elara"
        assert lifecycle.pending is None
        assert statuses[-1] == PlayerStatus.IN_GAME
        assert PlayerStatus.NEEDS_BACKSTORY in statuses

    def test_returning_active_player_goes_straight_in(self, sample_sheet):
        store = MemoryStore({"DND": {"active_players": {SID: {"id": PLAYER_ID, "character_data": sample_sheet}}}})
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            assert await store.get(PENDING) is None
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.IN_GAME

    def test_rejected_pending_player_starts_over(self):
        store = MemoryStore()
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            await store.update(PENDING, {"accepted": True})
            await store.settle()
            await store.remove(PENDING)
            await store.settle()
            assert await store.get(PENDING) == {"ip": PLAYER_ID, "accepted": False}
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.PENDING_APPROVAL

    def test_removed_active_player_falls_back_to_pending(self, sample_sheet):
        store = MemoryStore({"DND": {"active_players": {SID: {"id": PLAYER_ID, "character_data": sample_sheet}}}})
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            await store.remove(ACTIVE)
            await store.settle()
            assert await store.get(PENDING) == {"ip": PLAYER_ID, "accepted": False}
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.PENDING_APPROVAL
        assert lifecycle.character is None

    def test_error_is_terminal(self):
        store = MemoryStore()
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.fail("Failed to fetch IP address to create a persistent ID.")
            await store.set(PENDING, {"ip": PLAYER_ID, "accepted": True})
            await store.settle()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.ERROR
        assert lifecycle.error_message.startswith("Failed to fetch IP")

    def test_empty_id_is_an_error(self):
        lifecycle = PlayerLifecycle(MemoryStore())
        lifecycle.start("")
        assert lifecycle.status == PlayerStatus.ERROR
        assert lifecycle.error_message == NO_CONNECTION

    def test_blank_backstory_is_not_saved(self):
        store = MemoryStore()
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            writes = store.write_count
            assert await lifecycle.save_backstory("   ") is False
            assert store.write_count == writes
            lifecycle.close()

        asyncio.run(run())

    def test_backstory_save_failure_keeps_status(self):
        store = FailingUpdateStore({"DND": {"pending_players": {SID: {"ip": PLAYER_ID, "accepted": True}}}})
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            assert await lifecycle.save_backstory("Raised by wolves.") is False
            lifecycle.close()

        asyncio.run(run())
        assert lifecycle.status == PlayerStatus.NEEDS_BACKSTORY
        assert lifecycle.error_message == BACKSTORY_SAVE_FAILED

    def test_close_releases_subscriptions(self):
        store = MemoryStore()
        lifecycle = PlayerLifecycle(store)

        async def run():
            lifecycle.start(PLAYER_ID)
            await store.settle()
            assert store.listener_count == 2
            lifecycle.close()
            lifecycle.close()
            assert store.listener_count == 0

        asyncio.run(run())
