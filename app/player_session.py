"""
Player Session — one player's client, from identity to the table.

    start()  resolve identity ─► lifecycle ─► (IN_GAME) follow the table

Only while the lifecycle reports IN_GAME does the session follow the
shared dice roll, the scenery image and the active map. Leaving IN_GAME
(the DM removed the player) drops those subscriptions again.
"""

import logging
from typing import Dict, List, Optional

from pydantic import ValidationError

from models.game_state import DiceRoll, SceneryEntry
from models.maps import MapData, TokenData
from tools.dice_roller import REVEAL_DELAY, DiceRollProtocol, RollAnimation, can_player_roll
from tools.local_storage import LocalStorage
from tools.map_manager import ActiveMapWatcher
from tools.player_identity import IdentityResolutionError, IpLookup, resolve_player_id
from tools.player_lifecycle import PlayerLifecycle, PlayerStatus
from tools.store import DICE_ROLL, SCENERY, KeyedMutableStore, Subscription
from tools.viewport import ViewportController

logger = logging.getLogger("PlayerSession")


class PlayerSession:
    """Usage:
        session = PlayerSession(store, LocalStorage.for_profile(".companion", "alice"))
        await session.start()
        ...
        if session.can_roll:
            await session.roll()
        session.close()
    """

    def __init__(
        self,
        store: KeyedMutableStore,
        local_storage: LocalStorage,
        lookup_ip: Optional[IpLookup] = None,
        reveal_delay: float = REVEAL_DELAY,
    ):
        self.store = store
        self.local_storage = local_storage
        self._lookup_ip = lookup_ip
        self.lifecycle = PlayerLifecycle(store, on_change=self._on_status)
        self.dice = DiceRollProtocol(store, reveal_delay=reveal_delay)
        self.animation = RollAnimation(duration=reveal_delay)
        self.viewport = ViewportController()
        self.map_watcher = ActiveMapWatcher(store, on_change=self._on_map)

        self.dice_roll: Optional[DiceRoll] = None
        self.scenery: Optional[SceneryEntry] = None
        self._table_subs: List[Subscription] = []
        self._following = False

    @property
    def status(self) -> PlayerStatus:
        return self.lifecycle.status

    @property
    def active_map(self) -> Optional[MapData]:
        return self.map_watcher.map if self._following else None

    async def start(self) -> None:
        try:
            player_id = await resolve_player_id(self.store, self.local_storage, self._lookup_ip)
        except IdentityResolutionError as e:
            logger.error(f"Could not resolve player identity: {e}")
            self.lifecycle.fail(str(e))
            return
        self.lifecycle.start(player_id)

    # ------------------------------------------------------------------
    # Table following
    # ------------------------------------------------------------------

    def _on_status(self, lifecycle: PlayerLifecycle) -> None:
        if lifecycle.status == PlayerStatus.IN_GAME:
            self._follow_table()
        else:
            self._leave_table()

    def _follow_table(self) -> None:
        if self._following:
            return
        self._following = True
        self._table_subs = [
            self.store.subscribe(DICE_ROLL, self._on_dice),
            self.store.subscribe(SCENERY, self._on_scenery),
        ]
        self.map_watcher.start()
        logger.info(f"{self.lifecycle.sanitized_id} joined the table")

    def _leave_table(self) -> None:
        if not self._following:
            return
        self._following = False
        for sub in self._table_subs:
            sub.unsubscribe()
        self._table_subs = []
        self.map_watcher.close()
        self.animation.close()
        self.dice_roll = None
        self.scenery = None

    def _on_dice(self, value) -> None:
        try:
            self.dice_roll = DiceRoll.model_validate(value) if value else None
        except ValidationError as e:
            logger.warning(f"Ignoring malformed dice roll: {e}")
            return
        self.animation.update(self.dice_roll)

    def _on_scenery(self, value) -> None:
        try:
            self.scenery = SceneryEntry.model_validate(value) if value else None
        except ValidationError as e:
            logger.warning(f"Ignoring malformed scenery: {e}")

    def _on_map(self, map_data: Optional[MapData]) -> None:
        self.viewport.on_active_map_changed(map_data.id if map_data else None)

    # ------------------------------------------------------------------
    # Player actions
    # ------------------------------------------------------------------

    @property
    def can_roll(self) -> bool:
        return self._following and can_player_roll(self.dice_roll, self.lifecycle.sanitized_id)

    async def roll(self) -> bool:
        if not self._following:
            return False
        name = self.lifecycle.character.name if self.lifecycle.character else self.lifecycle.player_id
        return await self.dice.player_roll(self.lifecycle.sanitized_id, name, self.dice_roll)

    async def save_backstory(self, text: str) -> bool:
        return await self.lifecycle.save_backstory(text)

    def visible_tokens(self) -> Dict[str, TokenData]:
        """Tokens a player sees: hidden ones are left out."""
        active_map = self.active_map
        if active_map is None:
            return {}
        return {sid: token for sid, token in active_map.tokens.items() if token.visible}

    def close(self) -> None:
        self._leave_table()
        self.lifecycle.close()
        self.dice.close()
