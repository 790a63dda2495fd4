"""
Map Manager — the DM's map library and the active-map pointer.

    DND/maps/<push key>          MapData record (tokens start empty)
    DND/game_state/activeMapId   which map everyone is looking at
    DND/maps/<ms>-<filename>     uploaded image blob
    DND/maps/ai-<ms>.jpeg        generated image blob

A new map becomes active only when no map is active. Deleting the active
map moves the pointer to the first remaining map, or clears it.
"""

import io
import time
import logging
from typing import Any, Callable, List, Optional, Sequence, Tuple

from PIL import Image, UnidentifiedImageError

from agents.cartographer import CartographerAgent
from agents.tools.gemini_errors import GenerationError
from models.maps import MapData
from tools.debounce import Debouncer
from tools.results import ActionResult
from tools.store import (
    ACTIVE_MAP_ID,
    MAPS,
    ROOT,
    BlobStore,
    KeyedMutableStore,
    Subscription,
    join_path,
    map_blob_path,
    map_path,
)

logger = logging.getLogger("MapManager")

TOKEN_SIZE_DELAY = 0.1
MIN_TOKEN_SIZE = 0.25
MAX_TOKEN_SIZE = 2.5

UNREADABLE_IMAGE = "Could not read image file."
DELETE_FAILED = "Could not delete map."


def image_dimensions(data: bytes) -> Tuple[int, int, str]:
    """Natural (width, height, mime type) of an encoded image.

    Raises:
        ValueError: the bytes are not an image Pillow can identify.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
            mime = Image.MIME.get(img.format or "", "application/octet-stream")
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(UNREADABLE_IMAGE) from e
    return width, height, mime


class MapManager:
    def __init__(
        self,
        store: KeyedMutableStore,
        blobs: BlobStore,
        cartographer: Optional[CartographerAgent] = None,
        clock: Optional[Callable[[], int]] = None,
        token_size_delay: float = TOKEN_SIZE_DELAY,
    ):
        self.store = store
        self.blobs = blobs
        self.cartographer = cartographer
        self._clock = clock or (lambda: int(time.time() * 1000))
        self.token_size_value = 1.0
        self._token_size_writer = Debouncer(token_size_delay, self._write_token_size, name="tokenSize")

    async def set_active_map(self, map_id: Optional[str]) -> None:
        await self.store.set(ACTIVE_MAP_ID, map_id)
        logger.info(f"Active map: {map_id}")

    async def _create_map(self, record: dict, active_map_id: Optional[str]) -> MapData:
        map_id = await self.store.push(MAPS, record)
        if not active_map_id:
            await self.set_active_map(map_id)
        return MapData.from_store(map_id, record)

    async def _store_image(self, name: str, data: bytes, blob_path: str, active_map_id: Optional[str]) -> MapData:
        width, height, mime = image_dimensions(data)
        url = await self.blobs.upload(blob_path, data, mime)
        return await self._create_map({
            "name": name,
            "imageUrl": url,
            "storagePath": blob_path,
            "imageWidth": width,
            "imageHeight": height,
            "tokens": {},
            "tokenSize": 1,
        }, active_map_id)

    async def upload_map(
        self,
        name: str,
        data: bytes,
        filename: str,
        active_map_id: Optional[str] = None,
    ) -> ActionResult:
        """Store an image file as a new map. `data` of the result is the MapData."""
        if not name:
            return ActionResult.fail("A map name is required.")
        blob_path = map_blob_path(self._clock(), filename)
        try:
            created = await self._store_image(name, data, blob_path, active_map_id)
        except ValueError as e:
            return ActionResult.fail(str(e))
        except Exception as e:
            logger.error(f"Map upload failed: {e}")
            return ActionResult.fail(f"Failed to upload map: {e}")
        logger.info(f"Uploaded map '{name}' ({created.image_width}x{created.image_height})")
        return ActionResult.ok(created)

    async def generate_map(self, prompt: str, active_map_id: Optional[str] = None) -> ActionResult:
        """Have the cartographer draw a map and store it, named after the prompt."""
        prompt = (prompt or "").strip()
        if not prompt or self.cartographer is None:
            return ActionResult.fail("A map description is required.")
        try:
            data = await self.cartographer.draw(prompt)
            created = await self._store_image(prompt, data, f"{ROOT}/maps/ai-{self._clock()}.jpeg", active_map_id)
        except GenerationError as e:
            return ActionResult.fail(str(e))
        except ValueError:
            return ActionResult.fail("Could not process generated image data.")
        except Exception as e:
            logger.error(f"Storing generated map failed: {e}")
            return ActionResult.fail(f"Failed to upload map: {e}")
        return ActionResult.ok(created)

    async def delete_map(
        self,
        map_data: MapData,
        all_maps: Sequence[MapData],
        active_map_id: Optional[str],
    ) -> ActionResult:
        """Delete the image blob, then the record; re-point the active map if needed."""
        try:
            if map_data.storage_path:
                await self.blobs.delete(map_data.storage_path)
            await self.store.remove(map_path(map_data.id))
            if active_map_id == map_data.id:
                others = [m for m in all_maps if m.id != map_data.id]
                await self.set_active_map(others[0].id if others else None)
        except Exception as e:
            logger.error(f"Failed to delete map {map_data.id}: {e}")
            return ActionResult.fail(DELETE_FAILED)
        logger.info(f"Deleted map '{map_data.name}'")
        return ActionResult.ok()

    def set_token_size(self, map_id: str, size: float) -> float:
        """Update the local slider value now; write it after 100 ms of quiet."""
        size = max(MIN_TOKEN_SIZE, min(MAX_TOKEN_SIZE, float(size)))
        self.token_size_value = size
        self._token_size_writer.trigger((map_id, size))
        return size

    async def _write_token_size(self, pending) -> None:
        map_id, size = pending
        await self.store.set(join_path(map_path(map_id), "tokenSize"), size)

    async def flush(self) -> None:
        await self._token_size_writer.flush()

    def close(self) -> None:
        self._token_size_writer.cancel()


class ActiveMapWatcher:
    """Follows game_state/activeMapId, then the record it points at.

    `map` is None while no map is active or the record does not exist.
    """

    def __init__(self, store: KeyedMutableStore, on_change: Optional[Callable[[Optional[MapData]], Any]] = None):
        self.store = store
        self.map_id: Optional[str] = None
        self.map: Optional[MapData] = None
        self._on_change = on_change
        self._id_sub: Optional[Subscription] = None
        self._map_sub: Optional[Subscription] = None

    def start(self) -> None:
        self._id_sub = self.store.subscribe(ACTIVE_MAP_ID, self._on_active_id)

    def _on_active_id(self, value) -> None:
        map_id = value if isinstance(value, str) and value else None
        if map_id == self.map_id and (map_id is None or self._map_sub is not None):
            return
        self.map_id = map_id
        if self._map_sub is not None:
            self._map_sub.unsubscribe()
            self._map_sub = None
        if map_id is None:
            self._publish(None)
            return
        self._map_sub = self.store.subscribe(map_path(map_id), self._on_map)

    def _on_map(self, value) -> None:
        self._publish(MapData.from_store(self.map_id, value) if value else None)

    def _publish(self, map_data: Optional[MapData]) -> None:
        self.map = map_data
        if self._on_change:
            self._on_change(map_data)

    def close(self) -> None:
        for sub in (self._map_sub, self._id_sub):
            if sub is not None:
                sub.unsubscribe()
        self._map_sub = None
        self._id_sub = None


def order_maps(value: Any) -> List[MapData]:
    """Map records from a DND/maps snapshot, in key (creation) order."""
    if not isinstance(value, dict):
        return []
    return [MapData.from_store(key, record) for key, record in sorted(value.items()) if isinstance(record, dict)]
