"""
NPC Manager — DM-managed characters under DND/npcs/<push key>.

NPCs have no lifecycle: they exist from creation until deletion. Their
map tokens follow from the roster, so deleting an NPC leaves token
cleanup to the token synchronizer.
"""

import logging
from typing import Optional

from agents.character_forger import CharacterForger
from agents.portraitist import Portraitist
from agents.tools.gemini_errors import GenerationError
from agents.tools.store_errors import StoreError
from models.players import NPC
from tools.player_manager import paint_and_upload_avatar
from tools.results import ActionResult
from tools.store import NPCS, BlobStore, KeyedMutableStore, join_path, npc_path

logger = logging.getLogger("NpcManager")

CREATE_FAILED = "Could not save the new NPC."
DELETE_FAILED = "Could not delete the NPC."
AVATAR_SAVE_FAILED = "Could not save the new avatar."


class NpcManager:
    def __init__(
        self,
        store: KeyedMutableStore,
        blobs: BlobStore,
        forger: CharacterForger,
        portraitist: Portraitist,
    ):
        self.store = store
        self.blobs = blobs
        self.forger = forger
        self.portraitist = portraitist

    async def create_from_description(self, description: str) -> ActionResult:
        """Generate a sheet and store it under a new push key. `data` is the NPC."""
        if not (description or "").strip():
            return ActionResult.fail("A description is required.")
        try:
            character = await self.forger.from_description(description)
        except GenerationError as e:
            return ActionResult.fail(str(e))

        try:
            npc_id = await self.store.push(NPCS, {"character_data": character.to_store()})
        except Exception as e:
            logger.error(f"Failed to store NPC {character.name}: {e}")
            return ActionResult.fail(CREATE_FAILED)
        logger.info(f"NPC {character.name} created as {npc_id}")
        return ActionResult.ok(NPC(id=npc_id, character_data=character))

    async def delete(self, npc_id: str) -> ActionResult:
        try:
            await self.store.remove(npc_path(npc_id))
        except Exception as e:
            logger.error(f"Failed to delete NPC {npc_id}: {e}")
            return ActionResult.fail(DELETE_FAILED)
        return ActionResult.ok()

    async def generate_avatar(self, npc: NPC, refinement: Optional[str] = None) -> ActionResult:
        try:
            url = await paint_and_upload_avatar(self.blobs, self.portraitist, npc.character_data, npc.id, refinement)
            await self.store.set(join_path(npc_path(npc.id), "character_data", "avatarUrl"), url)
        except GenerationError as e:
            return ActionResult.fail(str(e))
        except StoreError as e:
            logger.error(f"Avatar upload for NPC {npc.id} failed: {e}")
            return ActionResult.fail(AVATAR_SAVE_FAILED)
        return ActionResult.ok(url)
