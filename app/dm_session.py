"""
DM Session — everything the Dungeon Master's screen holds.

Follows the whole shared tree (players, NPCs, maps, game state), keeps
the derived views a screen renders, and re-runs the token sync whenever
the roster or the active map changes. Every DM action goes through the
managers; nothing here writes to the store directly.
"""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from agents.cartographer import CartographerAgent
from agents.character_forger import CharacterForger
from agents.dm_assistant import DMAssistant
from agents.portraitist import Portraitist
from agents.scenery_painter import SceneryPainter
from agents.tools.gemini_tool import GeminiClient
from models.characters import Character
from models.game_state import DiceRoll, SceneryEntry
from models.maps import MapData
from models.players import ActivePlayer, NPC, PendingPlayer
from tools.command_batcher import CommandBatcher, CommandOutcome
from tools.dice_roller import DiceRollProtocol, REVEAL_DELAY
from tools.local_storage import LocalStorage
from tools.map_manager import MapManager, order_maps
from tools.narrative_log import PaginatedNarrativeLog, WRITE_DELAY
from tools.npc_manager import NpcManager
from tools.player_manager import PlayerManager
from tools.results import ActionResult
from tools.scenery import SceneryPublisher
from tools.store import (
    ACTIVE_PLAYERS,
    GAME_STATE,
    MAPS,
    NPCS,
    PENDING_PLAYERS,
    BlobStore,
    KeyedMutableStore,
    Subscription,
    sanitize_id,
)
from tools.token_sync import place_token, sync_tokens, toggle_visibility
from tools.viewport import Rect, ViewportController

logger = logging.getLogger("DMSession")

DM_ROLLER_NAME = "Dungeon Master"


def _records(value: Any) -> List[tuple]:
    return sorted(value.items()) if isinstance(value, dict) else []


class DMSession:
    """The DM's live view of the table."""

    def __init__(
        self,
        store: KeyedMutableStore,
        blobs: BlobStore,
        gemini: GeminiClient,
        local_storage: Optional[LocalStorage] = None,
        reveal_delay: float = REVEAL_DELAY,
        write_delay: float = WRITE_DELAY,
        token_size_delay: float = 0.1,
    ):
        self.store = store
        self.gemini = gemini

        forger = CharacterForger(gemini)
        portraitist = Portraitist(gemini)
        self.player_manager = PlayerManager(store, blobs, forger, portraitist)
        self.npc_manager = NpcManager(store, blobs, forger, portraitist)
        self.map_manager = MapManager(store, blobs, CartographerAgent(gemini), token_size_delay=token_size_delay)
        self.dice = DiceRollProtocol(store, reveal_delay=reveal_delay)
        self.batcher = CommandBatcher(store, blobs, DMAssistant(gemini), portraitist)
        self.story = PaginatedNarrativeLog(
            store,
            local_storage or LocalStorage(),
            scenery=SceneryPublisher(store, blobs, SceneryPainter(gemini)),
            write_delay=write_delay,
        )
        self.viewport = ViewportController()

        self.pending_players: Dict[str, PendingPlayer] = {}
        self.active_players: List[ActivePlayer] = []
        self.npcs: List[NPC] = []
        self.all_maps: List[MapData] = []
        self.active_map_id: Optional[str] = None
        self.dice_roll: Optional[DiceRoll] = None
        self.scenery: Optional[SceneryEntry] = None
        # Present in the store but unreadable; their tokens are left alone
        self._unreadable_players: List[str] = []
        self._unreadable_npcs: List[str] = []
        self._subs: List[Subscription] = []

    @property
    def ai_available(self) -> bool:
        return self.gemini.available

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def start(self) -> None:
        self._subs = [
            self.store.subscribe(PENDING_PLAYERS, self._on_pending),
            self.store.subscribe(ACTIVE_PLAYERS, self._on_active),
            self.store.subscribe(NPCS, self._on_npcs),
            self.store.subscribe(MAPS, self._on_maps),
            self.store.subscribe(GAME_STATE, self._on_game_state),
        ]
        self.story.start()
        logger.info("DM session started")

    def _on_pending(self, value) -> None:
        pending = {}
        for sid, record in _records(value):
            try:
                pending[sid] = PendingPlayer.model_validate(record)
            except ValidationError as e:
                logger.warning(f"Skipping malformed pending record {sid}: {e}")
        self.pending_players = pending

    async def _on_active(self, value) -> None:
        players, unreadable = [], []
        for sid, record in _records(value):
            try:
                players.append(ActivePlayer.model_validate(record))
            except ValidationError as e:
                logger.warning(f"Skipping malformed active record {sid}: {e}")
                unreadable.append(sid)
        self.active_players = players
        self._unreadable_players = unreadable
        await self.resync_tokens()

    async def _on_npcs(self, value) -> None:
        npcs, unreadable = [], []
        for npc_id, record in _records(value):
            try:
                npcs.append(NPC.model_validate({"id": npc_id, **record}))
            except (ValidationError, TypeError) as e:
                logger.warning(f"Skipping malformed NPC {npc_id}: {e}")
                unreadable.append(npc_id)
        self.npcs = npcs
        self._unreadable_npcs = unreadable
        await self.resync_tokens()

    async def _on_maps(self, value) -> None:
        self.all_maps = order_maps(value)
        await self.resync_tokens()

    async def _on_game_state(self, value) -> None:
        state = value if isinstance(value, dict) else {}
        try:
            self.dice_roll = DiceRoll.model_validate(state["dice_roll"]) if state.get("dice_roll") else None
        except ValidationError as e:
            logger.warning(f"Ignoring malformed dice roll: {e}")
            self.dice_roll = None
        try:
            self.scenery = SceneryEntry.model_validate(state["scenery"]) if state.get("scenery") else None
        except ValidationError as e:
            logger.warning(f"Ignoring malformed scenery: {e}")
            self.scenery = None

        active_map_id = state.get("activeMapId") or None
        if active_map_id != self.active_map_id:
            self.active_map_id = active_map_id
            self.viewport.on_active_map_changed(active_map_id)
            await self.resync_tokens()

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    @property
    def active_map(self) -> Optional[MapData]:
        for map_data in self.all_maps:
            if map_data.id == self.active_map_id:
                return map_data
        return None

    @property
    def roster_ids(self) -> List[str]:
        """Every entity present in the store, readable or not."""
        return (
            [p.id for p in self.active_players] + self._unreadable_players
            + [n.id for n in self.npcs] + self._unreadable_npcs
        )

    @property
    def characters(self) -> List[Character]:
        return [p.character_data for p in self.active_players] + [n.character_data for n in self.npcs]

    @property
    def visible_npcs(self) -> List[NPC]:
        """NPCs whose token on the active map is visible."""
        active_map = self.active_map
        if active_map is None:
            return []
        return [
            npc for npc in self.npcs
            if (token := active_map.tokens.get(sanitize_id(npc.id))) is not None and token.visible
        ]

    def mentioned_characters(self) -> List[Character]:
        return self.story.mentioned_characters(self.characters)

    async def resync_tokens(self) -> Dict[str, Optional[dict]]:
        try:
            return await sync_tokens(self.store, self.active_map, self.roster_ids)
        except Exception as e:
            logger.error(f"Token sync failed: {e}")
            return {}

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def approve(self, player_id: str) -> ActionResult:
        return await self.player_manager.approve(player_id)

    async def reject(self, player_id: str) -> ActionResult:
        active = any(sanitize_id(p.id) == sanitize_id(player_id) for p in self.active_players)
        return await self.player_manager.reject(player_id, active=active)

    async def forge_character(self, player_id: str, refinement: Optional[str] = None,
                              existing: Optional[Character] = None) -> ActionResult:
        pending = self.pending_players.get(sanitize_id(player_id))
        if pending is None or not pending.backstory:
            return ActionResult.fail("This player has not submitted a backstory yet.")
        return await self.player_manager.forge_character(pending.backstory, refinement, existing)

    async def finalize(self, player_id: str, character: Character) -> ActionResult:
        return await self.player_manager.finalize(player_id, character)

    async def roll(self, roller_name: str = DM_ROLLER_NAME) -> None:
        await self.dice.roll(roller_name)

    async def grant_roll(self, player_id: str) -> None:
        await self.dice.grant_permission(sanitize_id(player_id))

    async def run_command(self, command: str) -> CommandOutcome:
        return await self.batcher.execute(command, self.active_players, self.visible_npcs)

    # --- NPCs ---

    async def create_npc(self, description: str) -> ActionResult:
        return await self.npc_manager.create_from_description(description)

    async def delete_npc(self, npc_id: str) -> ActionResult:
        return await self.npc_manager.delete(npc_id)

    async def npc_avatar(self, npc_id: str, refinement: Optional[str] = None) -> ActionResult:
        npc = next((n for n in self.npcs if n.id == npc_id), None)
        if npc is None:
            return ActionResult.fail("No such NPC.")
        return await self.npc_manager.generate_avatar(npc, refinement)

    async def player_avatar(self, player_id: str, refinement: Optional[str] = None) -> ActionResult:
        sid = sanitize_id(player_id)
        player = next((p for p in self.active_players if sanitize_id(p.id) == sid), None)
        if player is None:
            return ActionResult.fail("No such player in the game.")
        return await self.player_manager.generate_avatar(player, refinement)

    # --- maps and tokens ---

    async def upload_map(self, name: str, data: bytes, filename: str) -> ActionResult:
        return await self.map_manager.upload_map(name, data, filename, self.active_map_id)

    async def generate_map(self, prompt: str) -> ActionResult:
        return await self.map_manager.generate_map(prompt, self.active_map_id)

    async def select_map(self, map_id: Optional[str]) -> None:
        await self.map_manager.set_active_map(map_id)

    async def delete_map(self, map_id: str) -> ActionResult:
        map_data = next((m for m in self.all_maps if m.id == map_id), None)
        if map_data is None:
            return ActionResult.fail("No such map.")
        return await self.map_manager.delete_map(map_data, self.all_maps, self.active_map_id)

    def set_token_size(self, size: float) -> Optional[float]:
        if self.active_map_id is None:
            return None
        return self.map_manager.set_token_size(self.active_map_id, size)

    async def toggle_token(self, entity_id: str) -> Optional[bool]:
        active_map = self.active_map
        if active_map is None:
            return None
        return await toggle_visibility(self.store, active_map, entity_id)

    async def drop_token(self, entity_id: str, drop_x: float, drop_y: float, viewport: Rect):
        """Place a token dropped at a screen point inside `viewport`."""
        active_map = self.active_map
        if active_map is None:
            return None
        rect = self.viewport.map_rect(viewport, active_map.image_width, active_map.image_height)
        if rect is None:
            return None
        return await place_token(self.store, active_map, entity_id, drop_x, drop_y, rect)

    async def flush(self) -> None:
        """Push any debounced writes now (story text, token size)."""
        await self.story.flush()
        await self.map_manager.flush()

    def close(self) -> None:
        for sub in self._subs:
            sub.unsubscribe()
        self._subs = []
        self.story.close()
        self.dice.close()
        self.map_manager.close()
        logger.info("DM session closed")
