"""
Character sheet schema — the shape every player and NPC record carries
under `character_data` in the shared tree.

Field names on the wire are camelCase (`personalityTraits`, `avatarUrl`,
`nextLevel`); the models accept either spelling and dump with aliases.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class Bar(BaseModel):
    """A current/max pool (health, stamina).

    `current <= max` is advisory only. The store does not enforce it and
    neither does this model; producers are expected to respect it.
    """

    current: int = 0
    max: int = 0

    model_config = {"extra": "allow"}

    @property
    def over_max(self) -> bool:
        return self.current > self.max


class ResourcePool(Bar):
    """An optional named pool such as Mana."""

    name: str = ""


class Experience(BaseModel):
    current: int = 0
    next_level: int = Field(alias="nextLevel", default=300)

    model_config = {"extra": "allow", "populate_by_name": True}


class Stats(BaseModel):
    strength: int = 10
    intelligence: int = 10
    charisma: int = 10

    model_config = {"extra": "allow"}


class Skill(BaseModel):
    name: str
    description: str = ""


class InventoryItem(BaseModel):
    name: str
    quantity: int = 1


class Character(BaseModel):
    """Schema for a full character sheet (player or NPC)."""

    name: str
    race: str = "Unknown"
    char_class: str = Field(alias="class", default="Unknown")
    age: Optional[int] = None
    level: int = 1
    health: Bar = Field(default_factory=Bar)
    stamina: Bar = Field(default_factory=lambda: Bar(current=100, max=100))
    resource: Optional[ResourcePool] = None
    experience: Experience = Field(default_factory=Experience)
    stats: Stats = Field(default_factory=Stats)
    skills: List[Skill] = []
    personality_traits: List[str] = Field(alias="personalityTraits", default_factory=list)
    fears: str = ""
    backstory: str = ""
    inventory: List[InventoryItem] = []
    avatar_url: Optional[str] = Field(alias="avatarUrl", default=None)

    model_config = {"extra": "allow", "populate_by_name": True}

    def to_store(self) -> dict:
        """Dump in the wire format written to the shared tree."""
        return self.model_dump(by_alias=True, exclude_none=True)
