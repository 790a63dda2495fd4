"""
Player Manager — the DM's side of the player lifecycle.

These writes are the only things that move a player between states:

    approve    pending.accepted = True
    finalize   ONE update at DND: pending/<sid> → None, active/<sid> → record
    reject     remove the pending or active record

Sheet generation happens between approve and finalize and touches no
record: the DM reviews (and may refine) the sheet before finalizing it.
"""

import logging
from typing import Optional

from agents.character_forger import CharacterForger
from agents.portraitist import Portraitist
from agents.tools.gemini_errors import GenerationError
from agents.tools.store_errors import StoreError
from models.characters import Character
from models.players import ActivePlayer
from tools.results import ActionResult
from tools.store import (
    ROOT,
    BlobStore,
    KeyedMutableStore,
    active_player_path,
    avatar_blob_path,
    join_path,
    pending_player_path,
    sanitize_id,
)

logger = logging.getLogger("PlayerManager")

APPROVE_FAILED = "Failed to approve player."
REJECT_FAILED = "Failed to remove player."
FINALIZE_FAILED = "Failed to move player to active game."
AVATAR_SAVE_FAILED = "Could not save the new avatar."


async def paint_and_upload_avatar(
    blobs: BlobStore,
    portraitist: Portraitist,
    character: Character,
    blob_id: str,
    refinement: Optional[str] = None,
) -> str:
    """Paint a portrait, store it at DND/avatars/<blob_id>, return its URL."""
    image = await portraitist.paint(character, refinement)
    return await blobs.upload(avatar_blob_path(blob_id), image, "image/png")


class PlayerManager:
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

    async def approve(self, player_id: str) -> ActionResult:
        sid = sanitize_id(player_id)
        try:
            await self.store.update(pending_player_path(sid), {"accepted": True})
        except Exception as e:
            logger.error(f"Failed to approve {sid}: {e}")
            return ActionResult.fail(APPROVE_FAILED)
        logger.info(f"Approved {sid}")
        return ActionResult.ok()

    async def reject(self, player_id: str, active: bool = False) -> ActionResult:
        """Remove a player's pending (or, with active=True, active) record."""
        sid = sanitize_id(player_id)
        path = active_player_path(sid) if active else pending_player_path(sid)
        try:
            await self.store.remove(path)
        except Exception as e:
            logger.error(f"Failed to reject/remove {path}: {e}")
            return ActionResult.fail(REJECT_FAILED)
        logger.info(f"Removed {path}")
        return ActionResult.ok()

    async def forge_character(
        self,
        backstory: str,
        refinement: Optional[str] = None,
        existing: Optional[Character] = None,
    ) -> ActionResult:
        """Generate a sheet for review. `data` is the Character on success."""
        if not (backstory or "").strip():
            return ActionResult.fail("A backstory is required.")
        try:
            character = await self.forger.from_backstory(backstory, refinement, existing)
        except GenerationError as e:
            return ActionResult.fail(str(e))
        return ActionResult.ok(character)

    async def finalize(self, player_id: str, character: Character) -> ActionResult:
        """Swap the pending record for an active one in a single batched write."""
        sid = sanitize_id(player_id)
        record = ActivePlayer(id=player_id, character_data=character)
        updates = {
            f"pending_players/{sid}": None,
            f"active_players/{sid}": record.to_store(),
        }
        try:
            await self.store.update(ROOT, updates)
        except Exception as e:
            logger.error(f"Failed to finalize character for {sid}: {e}")
            return ActionResult.fail(FINALIZE_FAILED)
        logger.info(f"{character.name} joins the game as {sid}")
        return ActionResult.ok(record)

    async def generate_avatar(self, player: ActivePlayer, refinement: Optional[str] = None) -> ActionResult:
        sid = sanitize_id(player.id)
        try:
            url = await paint_and_upload_avatar(self.blobs, self.portraitist, player.character_data, sid, refinement)
            await self.store.set(join_path(active_player_path(sid), "character_data", "avatarUrl"), url)
        except GenerationError as e:
            return ActionResult.fail(str(e))
        except StoreError as e:
            logger.error(f"Avatar upload for {sid} failed: {e}")
            return ActionResult.fail(AVATAR_SAVE_FAILED)
        return ActionResult.ok(url)
