"""
Dice Roller — the shared d20 handshake and its client-side animation.

Shared roll record at DND/game_state/dice_roll:

    idle       isRolling False, result set or None
    initiated  {isRolling True, rollerName, timestamp, result None, permissionHolder None}
    revealed   reveal_delay later the initiator writes {isRolling False, result 1..20}

The DM may roll at any time. A player may roll only while they hold the
permission and no roll is in flight; starting a roll consumes the grant.
The result is computed by whichever client initiates the roll and is not
verified by anyone else.
"""

import asyncio
import random
import time
import logging
from typing import Callable, Optional, Set

from models.game_state import DiceRoll
from tools.store import KeyedMutableStore, DICE_ROLL, join_path

logger = logging.getLogger("DiceRoller")

REVEAL_DELAY = 2.0
FLICKER_INTERVAL = 0.08


def roll_d20(rng: Optional[random.Random] = None) -> int:
    return (rng or random).randint(1, 20)


def can_player_roll(record: Optional[DiceRoll], player_sid: Optional[str]) -> bool:
    """A player may roll only with the grant in hand and nothing in flight."""
    if record is None or not player_sid:
        return False
    return record.permission_holder == player_sid and not record.is_rolling


# ---------------------------------------------------------------------------
# Shared roll protocol
# ---------------------------------------------------------------------------

class DiceRollProtocol:
    """Initiates rolls and writes their results.

    Usage:
        dice = DiceRollProtocol(store)
        await dice.roll("Dungeon Master")
        await dice.grant_permission(sanitized_player_id)
        ...
        dice.close()      # cancels any reveal still waiting
    """

    def __init__(
        self,
        store: KeyedMutableStore,
        reveal_delay: float = REVEAL_DELAY,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.store = store
        self.reveal_delay = reveal_delay
        self._rng = rng
        self._clock = clock or (lambda: int(time.time() * 1000))
        self._reveal: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    async def roll(self, roller_name: str) -> None:
        """Start a roll unconditionally (DM) and schedule its reveal."""
        await self.store.set(DICE_ROLL, {
            "isRolling": True,
            "rollerName": roller_name,
            "timestamp": self._clock(),
            "result": None,
            "permissionHolder": None,
        })
        logger.info(f"{roller_name} rolls a d20")

        if self._reveal is not None and not self._reveal.done():
            self._reveal.cancel()
        self._reveal = asyncio.get_running_loop().create_task(self._reveal_after_delay(roller_name))
        self._tasks.add(self._reveal)
        self._reveal.add_done_callback(self._tasks.discard)

    async def player_roll(self, player_sid: str, roller_name: str, current: Optional[DiceRoll]) -> bool:
        """Start a roll on a player's behalf. Returns False when not permitted."""
        if not can_player_roll(current, player_sid):
            logger.debug(f"Roll refused for {player_sid}")
            return False
        await self.roll(roller_name)
        return True

    async def grant_permission(self, player_sid: str) -> None:
        await self.store.set(join_path(DICE_ROLL, "permissionHolder"), player_sid)
        logger.info(f"Roll permission granted to {player_sid}")

    async def _reveal_after_delay(self, roller_name: str) -> None:
        await asyncio.sleep(self.reveal_delay)
        result = roll_d20(self._rng)
        try:
            await self.store.update(DICE_ROLL, {"isRolling": False, "result": result})
        except Exception as e:
            logger.error(f"Could not write roll result for {roller_name}: {e}")
            return
        logger.info(f"{roller_name} rolled {result}")

    async def wait_for_reveals(self) -> None:
        """Await every scheduled reveal (used on shutdown and in tests)."""
        while True:
            waiting = [task for task in self._tasks if not task.done()]
            if not waiting:
                return
            await asyncio.gather(*waiting, return_exceptions=True)

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._reveal = None


class RollAnimation:
    """Client-side flicker shown while a roll is in flight.

    The flicker numbers are local randomness, not the shared result. When
    the reveal window ends, or a non-rolling record arrives, the display
    settles on the record's result.
    """

    def __init__(
        self,
        duration: float = REVEAL_DELAY,
        interval: float = FLICKER_INTERVAL,
        rng: Optional[random.Random] = None,
        on_frame: Optional[Callable[[Optional[int]], None]] = None,
    ):
        self.duration = duration
        self.interval = interval
        self.display: Optional[int] = 20
        self._rng = rng or random.Random()
        self._on_frame = on_frame
        self._latest: Optional[DiceRoll] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def animating(self) -> bool:
        return self._task is not None and not self._task.done()

    def update(self, record: Optional[DiceRoll]) -> None:
        self._latest = record
        if record is not None and record.is_rolling:
            self._stop()
            self._task = asyncio.get_running_loop().create_task(self._flicker())
        else:
            self._stop()
            self._show(record.result if record else None)

    async def _flicker(self) -> None:
        loop = asyncio.get_running_loop()
        end = loop.time() + self.duration
        while loop.time() < end:
            self._show(self._rng.randint(1, 20))
            await asyncio.sleep(min(self.interval, max(0.0, end - loop.time())))
        self._show(self._latest.result if self._latest else None)

    def _show(self, value: Optional[int]) -> None:
        self.display = value
        if self._on_frame:
            self._on_frame(value)

    def _stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    def close(self) -> None:
        self._stop()
