"""
AssistantUpdate — one entry of the DM assistant's response array.

The validation gate between the model's JSON and the batch writer.
Every entry names its target by exact character name; every other key
is a partial field update that passes through untouched.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class AssistantUpdate(BaseModel):
    """Partial update for a single character, as returned by the assistant."""

    player_name: str = Field(alias="playerName")
    avatar_refinement: Optional[str] = Field(alias="avatarRefinement", default=None)

    # Everything else (health, stats, inventory, ...) rides along as extras.
    model_config = {"extra": "allow", "populate_by_name": True}

    def field_updates(self) -> Dict[str, Any]:
        """The character fields this entry changes, keyed by wire name."""
        return dict(self.model_extra or {})


def parse_assistant_updates(raw: Any) -> List[AssistantUpdate]:
    """Validate a decoded JSON array. Entries without a name are dropped."""
    if not isinstance(raw, list):
        return []
    updates = []
    for entry in raw:
        if isinstance(entry, dict) and isinstance(entry.get("playerName"), str):
            updates.append(AssistantUpdate.model_validate(entry))
    return updates
