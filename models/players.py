"""
Player and NPC records.

PendingPlayer and ActivePlayer are keyed by the same sanitized identifier
and are mutually exclusive: finalizing a sheet deletes the pending record
and creates the active one in a single batched write.
"""

from typing import Optional
from pydantic import BaseModel

from models.characters import Character


class PendingPlayer(BaseModel):
    """A player awaiting DM approval, a backstory, or a generated sheet.

    `ip` holds the raw persistent identifier (not only the address).
    """

    ip: str
    accepted: bool = False
    backstory: Optional[str] = None

    model_config = {"extra": "allow"}

    @property
    def player_id(self) -> str:
        return self.ip

    def to_store(self) -> dict:
        return self.model_dump(exclude_none=True)


class ActivePlayer(BaseModel):
    """A player with a finalized character sheet."""

    id: str
    character_data: Character

    model_config = {"extra": "allow"}

    @property
    def player_id(self) -> str:
        return self.id

    @property
    def name(self) -> str:
        return self.character_data.name

    def to_store(self) -> dict:
        return {"id": self.id, "character_data": self.character_data.to_store()}


class NPC(BaseModel):
    """A DM-managed character. `id` is the push key it is stored under."""

    id: str
    character_data: Character

    model_config = {"extra": "allow"}

    @property
    def name(self) -> str:
        return self.character_data.name

    def to_store(self) -> dict:
        # The key is the path segment, not a stored field.
        return {"character_data": self.character_data.to_store()}
