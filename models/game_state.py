"""
GameState singleton — active map, dice roll, scenery, and story pages.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, field_validator


class DiceRoll(BaseModel):
    """The shared roll record.

    Idle: `is_rolling` False with `result` set or None.
    `permission_holder` is the sanitized id of the one player allowed to
    start the next roll; initiating a roll always clears it.
    """

    is_rolling: bool = Field(alias="isRolling", default=False)
    roller_name: str = Field(alias="rollerName", default="")
    timestamp: int = 0
    result: Optional[int] = None
    permission_holder: Optional[str] = Field(alias="permissionHolder", default=None)

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("result")
    @classmethod
    def result_in_range(cls, v):
        if v is not None and not 1 <= v <= 20:
            raise ValueError(f"d20 result out of range: {v}")
        return v


class SceneryEntry(BaseModel):
    image_url: str = Field(alias="imageUrl")
    timestamp: int = 0

    model_config = {"extra": "allow", "populate_by_name": True}


class StoryPage(BaseModel):
    text: str = ""


def coerce_story_pages(value: Any) -> Dict[int, StoryPage]:
    """Normalize a story_pages snapshot into {page_number: StoryPage}.

    The backend may hand back integer-keyed objects as a list with holes
    (index 0 unused), or as a dict with string keys. Non-numeric keys and
    empty slots are dropped.
    """
    if not value:
        return {}
    if isinstance(value, list):
        items = enumerate(value)
    else:
        items = value.items()

    pages: Dict[int, StoryPage] = {}
    for key, page in items:
        if page is None:
            continue
        try:
            number = int(key)
        except (TypeError, ValueError):
            continue
        if isinstance(page, dict):
            pages[number] = StoryPage.model_validate(page)
    return pages


class GameState(BaseModel):
    """Singleton under DND/game_state."""

    active_map_id: Optional[str] = Field(alias="activeMapId", default=None)
    dice_roll: Optional[DiceRoll] = None
    scenery: Optional[SceneryEntry] = None
    story_pages: Dict[int, StoryPage] = {}

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("story_pages", mode="before")
    @classmethod
    def normalize_pages(cls, v):
        return coerce_story_pages(v)
