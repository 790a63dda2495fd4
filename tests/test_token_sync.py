"""
Tests for tools/token_sync.py — roster/token congruence and drag/drop
placement in bottom-left map-pixel coordinates.
"""

import asyncio

import pytest

from models.maps import MapData
from tools.store import MemoryStore
from tools.token_sync import (
    compute_token_updates,
    default_token,
    drop_to_map_pixels,
    map_pixels_to_screen,
    place_token,
    sync_tokens,
    toggle_visibility,
)
from tools.viewport import Rect

MAP_PATH = "DND/maps/m1"


def _map(tokens=None, width=1000, height=500):
    return MapData.from_store("m1", {
        "name": "Crypt",
        "imageWidth": width,
        "imageHeight": height,
        "tokens": tokens or {},
    })


async def _stored_map(store):
    return MapData.from_store("m1", await store.get(MAP_PATH))


class TestComputeUpdates:

    def test_adds_missing_and_removes_stale(self):
        map_data = _map({
            "10_0_0_7-1": {"x": 5, "y": 5, "visible": True},
            "stale": {"x": 1, "y": 1, "visible": True},
        })
        updates = compute_token_updates(map_data, ["10.0.0.7-1", "-Nnpc.1"])
        assert updates == {
            "-Nnpc_1": {"x": 100.0, "y": 50.0, "visible": True},
            "stale": None,
        }

    def test_hidden_member_is_kept(self):
        map_data = _map({"p1": {"x": 5, "y": 5, "visible": False}})
        assert compute_token_updates(map_data, ["p1"]) == {}

    def test_duplicate_roster_entries(self):
        assert list(compute_token_updates(_map(), ["p.1", "p.1"])) == ["p_1"]

    def test_default_position_without_dimensions(self):
        token = default_token(MapData(id="m1"))
        assert (token.x, token.y, token.visible) == (100.0, 100.0, True)


class TestSyncTokens:

    def test_converges_in_one_write(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"name": "Crypt", "imageWidth": 1000, "imageHeight": 500,
                                                      "tokens": {"gone": {"x": 1, "y": 1, "visible": True}}}}}})

        async def run():
            writes = store.write_count
            await sync_tokens(store, await _stored_map(store), ["p.1", "n1"])
            assert store.write_count == writes + 1
            assert set((await _stored_map(store)).tokens) == {"p_1", "n1"}

        asyncio.run(run())

    def test_second_pass_writes_nothing(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"name": "Crypt", "imageWidth": 1000, "imageHeight": 500}}}})

        async def run():
            await sync_tokens(store, await _stored_map(store), ["p1", "n1"])
            writes = store.write_count
            assert await sync_tokens(store, await _stored_map(store), ["p1", "n1"]) == {}
            assert store.write_count == writes

        asyncio.run(run())

    def test_empty_roster_clears_tokens(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"name": "Crypt",
                                                      "tokens": {"p1": {"x": 1, "y": 1, "visible": True}}}}}})

        async def run():
            await sync_tokens(store, await _stored_map(store), [])
            assert await store.get(f"{MAP_PATH}/tokens") is None
            assert await store.get(f"{MAP_PATH}/name") == "Crypt"

        asyncio.run(run())

    def test_no_active_map(self):
        store = MemoryStore()
        assert asyncio.run(sync_tokens(store, None, ["p1"])) == {}
        assert store.write_count == 0


class TestDropPlacement:

    RECT = Rect(left=100, top=50, width=500, height=250)

    def test_corners(self):
        assert drop_to_map_pixels(100, 300, self.RECT, 1000, 500) == (0, 0)
        assert drop_to_map_pixels(600, 50, self.RECT, 1000, 500) == (1000, 500)
        assert drop_to_map_pixels(350, 175, self.RECT, 1000, 500) == (500, 250)

    def test_y_grows_upward(self):
        _, low = drop_to_map_pixels(350, 250, self.RECT, 1000, 500)
        _, high = drop_to_map_pixels(350, 100, self.RECT, 1000, 500)
        assert high > low

    def test_outside_drop_is_clamped(self):
        assert drop_to_map_pixels(0, 1000, self.RECT, 1000, 500) == (0, 0)
        assert drop_to_map_pixels(9999, -9999, self.RECT, 1000, 500) == (1000, 500)

    @pytest.mark.parametrize("x,y", [(0, 0), (123.5, 77.25), (1000, 500), (640, 10)])
    def test_screen_round_trip(self, x, y):
        sx, sy = map_pixels_to_screen(x, y, self.RECT, 1000, 500)
        assert drop_to_map_pixels(sx, sy, self.RECT, 1000, 500) == (pytest.approx(x), pytest.approx(y))

    def test_place_token_keeps_visibility(self):
        store = MemoryStore({"DND": {"maps": {"m1": {
            "imageWidth": 1000, "imageHeight": 500,
            "tokens": {"p1": {"x": 100, "y": 50, "visible": False}},
        }}}})

        async def run():
            stored = await place_token(store, await _stored_map(store), "p1", 350, 175, self.RECT)
            assert stored == (500, 250)
            assert await store.get(f"{MAP_PATH}/tokens/p1") == {"x": 500, "y": 250, "visible": False}

        asyncio.run(run())

    def test_place_token_needs_dimensions(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"name": "Unsized"}}}})

        async def run():
            assert await place_token(store, await _stored_map(store), "p1", 1, 1, self.RECT) is None

        asyncio.run(run())
        assert store.write_count == 0


class TestToggleVisibility:

    def test_flips_one_token(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"tokens": {
            "n1": {"x": 1, "y": 1, "visible": True},
            "p1": {"x": 2, "y": 2, "visible": True},
        }}}}})

        async def run():
            assert await toggle_visibility(store, await _stored_map(store), "n1") is False
            assert await toggle_visibility(store, await _stored_map(store), "n1") is True
            assert await store.get(f"{MAP_PATH}/tokens/p1/visible") is True

        asyncio.run(run())

    def test_missing_token(self):
        store = MemoryStore({"DND": {"maps": {"m1": {"name": "Crypt"}}}})
        assert asyncio.run(toggle_visibility(store, MapData(id="m1"), "ghost")) is None
