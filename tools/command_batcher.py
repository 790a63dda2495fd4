"""
Command Batcher — applies a DM assistant command as one atomic write.

    command ─► DMAssistant.interpret ─► [AssistantUpdate, ...]
        for each entry naming a character on the roster (exact name):
            avatarRefinement → new portrait, blob upload, stage avatarUrl
            other fields     → stage field by field
        ─► ONE root-level update with every staged path

Entries naming nobody are skipped silently. Scalars and lists overwrite;
one-level objects (health, stats, ...) write only the sub-keys present.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from agents.dm_assistant import DMAssistant
from agents.portraitist import Portraitist
from agents.tools.gemini_errors import GenerationError
from agents.tools.store_errors import StoreError
from models.players import ActivePlayer, NPC
from tools.player_manager import paint_and_upload_avatar
from tools.store import (
    BlobStore,
    KeyedMutableStore,
    active_player_path,
    join_path,
    npc_path,
    sanitize_id,
)

logger = logging.getLogger("CommandBatcher")

NO_CHANGES = "The command didn't result in any changes."
SAVE_FAILED = "The changes could not be saved. Please try again."


@dataclass
class CommandOutcome:
    """What the DM sees after a command. Never written to the store."""

    applied: bool
    message: str
    updates: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.applied


def stage_field_updates(base_path: str, fields: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten one entry's fields into {path: value} writes under base_path."""
    staged: Dict[str, Any] = {}
    for key, value in fields.items():
        if isinstance(value, dict):
            for sub_key, sub_value in value.items():
                staged[join_path(base_path, key, sub_key)] = sub_value
        else:
            staged[join_path(base_path, key)] = value
    return staged


Entity = Union[ActivePlayer, NPC]


def _character_path(entity: Entity) -> str:
    if isinstance(entity, ActivePlayer):
        return join_path(active_player_path(sanitize_id(entity.id)), "character_data")
    return join_path(npc_path(sanitize_id(entity.id)), "character_data")


def _find(name: str, roster: Sequence[Entity]) -> Optional[Entity]:
    for entity in roster:
        if entity.character_data.name == name:
            return entity
    return None


class CommandBatcher:
    """Runs DM assistant commands against the shared store."""

    def __init__(
        self,
        store: KeyedMutableStore,
        blobs: BlobStore,
        assistant: DMAssistant,
        portraitist: Portraitist,
    ):
        self.store = store
        self.blobs = blobs
        self.assistant = assistant
        self.portraitist = portraitist

    async def execute(
        self,
        command: str,
        players: Sequence[ActivePlayer],
        visible_npcs: Sequence[NPC],
    ) -> CommandOutcome:
        command = (command or "").strip()
        if not command:
            return CommandOutcome(False, NO_CHANGES)

        try:
            results = await self.assistant.interpret(command, players, visible_npcs)
            batch, messages = await self._stage(results, list(players) + list(visible_npcs))
        except GenerationError as e:
            return CommandOutcome(False, str(e))
        except StoreError as e:
            logger.error(f"Avatar upload failed: {e}")
            return CommandOutcome(False, SAVE_FAILED)

        if not batch:
            logger.info(f"Command had no effect: {command[:80]}")
            return CommandOutcome(False, NO_CHANGES)

        try:
            await self.store.update("", batch)
        except Exception as e:
            logger.error(f"Batch update of {len(batch)} path(s) failed: {e}")
            return CommandOutcome(False, SAVE_FAILED)

        summary = ". ".join(dict.fromkeys(messages)) + "."
        logger.info(f"Applied {len(batch)} write(s): {summary}")
        return CommandOutcome(True, summary, batch)

    async def _stage(self, results, roster: List[Entity]) -> Tuple[Dict[str, Any], List[str]]:
        batch: Dict[str, Any] = {}
        messages: List[str] = []
        for result in results:
            entity = _find(result.player_name, roster)
            if entity is None:
                logger.debug(f"Skipping update for unknown character '{result.player_name}'")
                continue
            base_path = _character_path(entity)

            if result.avatar_refinement:
                url = await paint_and_upload_avatar(
                    self.blobs, self.portraitist, entity.character_data,
                    sanitize_id(entity.id), result.avatar_refinement,
                )
                batch[join_path(base_path, "avatarUrl")] = url
                messages.append(f"Refined {result.player_name}'s avatar")

            staged = stage_field_updates(base_path, result.field_updates())
            if staged:
                batch.update(staged)
                messages.append(f"Updated {result.player_name}")
        return batch, messages
