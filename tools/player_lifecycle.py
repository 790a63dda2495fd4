"""
Player Lifecycle — where a player stands between first contact and play.

    INITIALIZING → PENDING_APPROVAL → NEEDS_BACKSTORY → WAITING_FOR_SHEET → IN_GAME
                                                                            ERROR

Nothing here advances the state. The status is recomputed from whatever
the store currently holds at two paths:

    DND/active_players/<sid>    exists → IN_GAME (pending path released)
    DND/pending_players/<sid>   otherwise decides the pending sub-state;
                                absent → auto-created as {ip, accepted: False}

The DM's approve / finalize / reject writes are the only things that move
a player forward; this module just reacts to them.
"""

import logging
from enum import Enum
from typing import Any, Callable, List, Optional

from pydantic import ValidationError

from models.characters import Character
from models.players import PendingPlayer
from tools.store import (
    KeyedMutableStore,
    Subscription,
    active_player_path,
    pending_player_path,
    sanitize_id,
)

logger = logging.getLogger("PlayerLifecycle")

BACKSTORY_SAVE_FAILED = "Could not save your story. Please try again."
NO_CONNECTION = "Could not establish a persistent player connection."


class PlayerStatus(str, Enum):
    INITIALIZING = "initializing"
    PENDING_APPROVAL = "pending_approval"
    NEEDS_BACKSTORY = "needs_backstory"
    WAITING_FOR_SHEET = "waiting_for_sheet"
    IN_GAME = "in_game"
    ERROR = "error"


def derive_pending_status(record: Optional[PendingPlayer]) -> PlayerStatus:
    """Map a pending record onto its sub-state. A backstory outranks approval."""
    if record is None:
        return PlayerStatus.PENDING_APPROVAL
    if record.backstory:
        return PlayerStatus.WAITING_FOR_SHEET
    if record.accepted:
        return PlayerStatus.NEEDS_BACKSTORY
    return PlayerStatus.PENDING_APPROVAL


StatusListener = Callable[["PlayerLifecycle"], None]


class PlayerLifecycle:
    """Subscription-driven status for one player identifier.

    Usage:
        lifecycle = PlayerLifecycle(store, on_change=render)
        lifecycle.start(player_id)        # or lifecycle.fail(message)
        ...
        lifecycle.close()
    """

    def __init__(self, store: KeyedMutableStore, on_change: Optional[StatusListener] = None):
        self.store = store
        self.status = PlayerStatus.INITIALIZING
        self.player_id: Optional[str] = None
        self.sanitized_id: Optional[str] = None
        self.character: Optional[Character] = None
        self.pending: Optional[PendingPlayer] = None
        self.error_message: Optional[str] = None
        self._listeners: List[StatusListener] = [on_change] if on_change else []
        self._active_sub: Optional[Subscription] = None
        self._pending_sub: Optional[Subscription] = None
        self._closed = False

    def add_listener(self, listener: StatusListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def start(self, player_id: str) -> None:
        """Begin following the records for a resolved identifier."""
        if not player_id:
            self.fail(NO_CONNECTION)
            return
        self.player_id = player_id
        self.sanitized_id = sanitize_id(player_id)
        self._active_sub = self.store.subscribe(active_player_path(self.sanitized_id), self._on_active)

    def fail(self, message: Optional[str]) -> None:
        """Enter the terminal ERROR state (identity resolution failed)."""
        self.error_message = message or NO_CONNECTION
        self._release()
        self._set_status(PlayerStatus.ERROR)

    def close(self) -> None:
        """Release every subscription. Safe to call more than once."""
        self._closed = True
        self._release()

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def _on_active(self, value: Any) -> None:
        if value:
            self._drop_pending_sub()
            try:
                self.character = Character.model_validate(value.get("character_data") or {})
            except (ValidationError, AttributeError) as e:
                logger.error(f"Active record for {self.sanitized_id} is malformed: {e}")
                self.character = None
            self.pending = None
            self._set_status(PlayerStatus.IN_GAME)
            return

        self.character = None
        if self._pending_sub is None and not self._closed and self.status != PlayerStatus.ERROR:
            self._pending_sub = self.store.subscribe(pending_player_path(self.sanitized_id), self._on_pending)

    async def _on_pending(self, value: Any) -> None:
        if value:
            try:
                self.pending = PendingPlayer.model_validate(value)
            except ValidationError as e:
                logger.error(f"Pending record for {self.sanitized_id} is malformed: {e}")
                return
            self._set_status(derive_pending_status(self.pending))
            return

        self.pending = None
        # Finalize deletes pending and creates active in one write; if the
        # active record already exists the active listener takes over.
        if await self.store.get(active_player_path(self.sanitized_id)):
            return
        if self._pending_sub is None or not self._pending_sub.active:
            return
        try:
            await self.store.set(
                pending_player_path(self.sanitized_id),
                PendingPlayer(ip=self.player_id).to_store(),
            )
        except Exception as e:
            logger.error(f"Could not create pending record for {self.sanitized_id}: {e}")
        self._set_status(PlayerStatus.PENDING_APPROVAL)

    # ------------------------------------------------------------------
    # Player action
    # ------------------------------------------------------------------

    async def save_backstory(self, backstory: str) -> bool:
        """Attach a backstory to the pending record. Returns False on failure."""
        text = (backstory or "").strip()
        if not text or not self.sanitized_id:
            return False
        try:
            await self.store.update(pending_player_path(self.sanitized_id), {"backstory": text})
        except Exception as e:
            logger.error(f"Failed to save backstory: {e}")
            self.error_message = BACKSTORY_SAVE_FAILED
            self._notify()
            return False
        self.error_message = None
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_status(self, status: PlayerStatus) -> None:
        if self.status == PlayerStatus.ERROR:
            return
        if status != self.status:
            logger.info(f"Player {self.sanitized_id}: {self.status.value} -> {status.value}")
        self.status = status
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"Status listener failed: {e}", exc_info=True)

    def _drop_pending_sub(self) -> None:
        if self._pending_sub is not None:
            self._pending_sub.unsubscribe()
            self._pending_sub = None

    def _release(self) -> None:
        self._drop_pending_sub()
        if self._active_sub is not None:
            self._active_sub.unsubscribe()
            self._active_sub = None
