"""
Pydantic v2 data models — the contract for every record in the shared tree.

Records are validated on the way out of the store; writes are dumped in
the wire format (camelCase aliases) the other clients expect.
"""

from models.characters import (
    Character,
    Bar,
    ResourcePool,
    Experience,
    Stats,
    Skill,
    InventoryItem,
)
from models.players import PendingPlayer, ActivePlayer, NPC
from models.maps import MapData, TokenData
from models.game_state import (
    GameState,
    DiceRoll,
    SceneryEntry,
    StoryPage,
    coerce_story_pages,
)
from models.assistant import AssistantUpdate, parse_assistant_updates

__all__ = [
    "Character",
    "Bar",
    "ResourcePool",
    "Experience",
    "Stats",
    "Skill",
    "InventoryItem",
    "PendingPlayer",
    "ActivePlayer",
    "NPC",
    "MapData",
    "TokenData",
    "GameState",
    "DiceRoll",
    "SceneryEntry",
    "StoryPage",
    "coerce_story_pages",
    "AssistantUpdate",
    "parse_assistant_updates",
]
