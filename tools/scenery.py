"""
SceneryPublisher — paints the current scene and shares it with the table.

One shared image: each publish overwrites DND/scenery/scene.jpg and then
points game_state/scenery at it with a fresh timestamp.
"""

import time
import logging
from typing import Callable, Optional

from agents.scenery_painter import SceneryPainter
from tools.store import SCENE_BLOB_PATH, SCENERY, BlobStore, KeyedMutableStore

logger = logging.getLogger("Scenery")


class SceneryPublisher:
    def __init__(
        self,
        store: KeyedMutableStore,
        blobs: BlobStore,
        painter: SceneryPainter,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.blobs = blobs
        self.painter = painter
        self._clock = clock or (lambda: int(time.time() * 1000))

    @property
    def available(self) -> bool:
        return self.painter.gemini.available

    async def publish(self, page_content: str, recent_narration: str) -> Optional[str]:
        """Generate, upload and announce a scene. Returns its URL.

        Nothing happens for empty narration. Generation and store errors
        propagate to the caller.
        """
        if not recent_narration.strip():
            return None
        image = await self.painter.paint(page_content, recent_narration)
        url = await self.blobs.upload(SCENE_BLOB_PATH, image, "image/jpeg")
        await self.store.set(SCENERY, {"imageUrl": url, "timestamp": self._clock()})
        logger.info(f"Scenery updated for: {recent_narration[:60]}")
        return url
