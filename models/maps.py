"""
Map and token records.

Token coordinates are map-image pixels measured from the BOTTOM-left
corner of the image (stored y grows upward).
"""

from typing import Dict, Optional
from pydantic import BaseModel, Field


class TokenData(BaseModel):
    x: float = 0.0
    y: float = 0.0
    visible: bool = True

    model_config = {"extra": "allow"}


class MapData(BaseModel):
    """A map record under DND/maps/<id>."""

    id: str
    name: str = ""
    image_url: str = Field(alias="imageUrl", default="")
    storage_path: str = Field(alias="storagePath", default="")
    image_width: Optional[int] = Field(alias="imageWidth", default=None)
    image_height: Optional[int] = Field(alias="imageHeight", default=None)
    token_size: float = Field(alias="tokenSize", default=1.0)
    tokens: Dict[str, TokenData] = {}

    model_config = {"extra": "allow", "populate_by_name": True}

    @classmethod
    def from_store(cls, map_id: str, value: dict) -> "MapData":
        data = dict(value or {})
        data["id"] = map_id
        # Null token entries can appear mid-sync; they are not tokens.
        data["tokens"] = {k: v for k, v in (data.get("tokens") or {}).items() if v}
        return cls.model_validate(data)

    def to_store(self) -> dict:
        data = self.model_dump(by_alias=True, exclude_none=True)
        data.pop("id", None)
        return data
