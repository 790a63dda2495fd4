"""
Token Sync — keeps the active map's tokens congruent with the roster.

Token existence is owned here: one token per active player and NPC,
nothing else. Position is written by drag/drop, visibility by the DM.
Roster membership and visibility are independent; a hidden token is
still a roster member and is never deleted for being hidden.

All creations and deletions for one pass go out as a single batched
update on `DND/maps/<id>/tokens`. A pass with nothing to change writes
nothing, so re-running it on every store broadcast cannot loop.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from models.maps import MapData, TokenData
from tools.store import KeyedMutableStore, join_path, sanitize_id, tokens_path
from tools.viewport import Rect, clamp

logger = logging.getLogger("TokenSync")

DEFAULT_IMAGE_SIZE = 1000
DEFAULT_INSET = 0.1


def default_token(map_data: MapData) -> TokenData:
    """A new token: 10% in from the map's bottom-left, visible."""
    return TokenData(
        x=(map_data.image_width or DEFAULT_IMAGE_SIZE) * DEFAULT_INSET,
        y=(map_data.image_height or DEFAULT_IMAGE_SIZE) * DEFAULT_INSET,
        visible=True,
    )


def compute_token_updates(map_data: MapData, roster_ids: Iterable[str]) -> Dict[str, Optional[dict]]:
    """Diff roster against tokens.

    Returns {sanitized_id: TokenData dict} for roster members without a
    token and {sanitized_id: None} for tokens whose entity is gone.
    """
    wanted = []
    for raw in roster_ids:
        sid = sanitize_id(raw)
        if sid not in wanted:
            wanted.append(sid)
    current = set(map_data.tokens)

    updates: Dict[str, Optional[dict]] = {}
    for sid in wanted:
        if sid not in current:
            updates[sid] = default_token(map_data).model_dump()
    for sid in map_data.tokens:
        if sid not in wanted:
            updates[sid] = None
    return updates


async def sync_tokens(
    store: KeyedMutableStore,
    map_data: Optional[MapData],
    roster_ids: Iterable[str],
) -> Dict[str, Optional[dict]]:
    """Apply one sync pass to the active map. Returns what was written."""
    if map_data is None:
        return {}
    updates = compute_token_updates(map_data, roster_ids)
    if not updates:
        return updates
    added = sum(1 for v in updates.values() if v is not None)
    logger.info(f"Map {map_data.id}: +{added} / -{len(updates) - added} tokens")
    await store.update(tokens_path(map_data.id), updates)
    return updates


# ---------------------------------------------------------------------------
# Drag/drop placement
# ---------------------------------------------------------------------------

def drop_to_map_pixels(
    drop_x: float,
    drop_y: float,
    map_rect: Rect,
    image_width: float,
    image_height: float,
) -> Tuple[float, float]:
    """Screen drop point → stored map-pixel coordinates.

    Scales by natural/rendered size, flips y so it grows upward from the
    bottom edge, and clamps both axes to the image.
    """
    x_on_map = drop_x - map_rect.left
    y_on_map = drop_y - map_rect.top
    x_pixel = (x_on_map / map_rect.width) * image_width
    y_from_top = (y_on_map / map_rect.height) * image_height
    y_from_bottom = image_height - y_from_top
    return clamp(x_pixel, 0, image_width), clamp(y_from_bottom, 0, image_height)


def map_pixels_to_screen(
    x: float,
    y: float,
    map_rect: Rect,
    image_width: float,
    image_height: float,
) -> Tuple[float, float]:
    """Stored map-pixel coordinates → screen point (where the token renders)."""
    screen_x = map_rect.left + (x / image_width) * map_rect.width
    screen_y = map_rect.top + (1 - y / image_height) * map_rect.height
    return screen_x, screen_y


async def place_token(
    store: KeyedMutableStore,
    map_data: MapData,
    entity_id: str,
    drop_x: float,
    drop_y: float,
    map_rect: Rect,
) -> Optional[Tuple[float, float]]:
    """Write a dropped token's new position. Visibility is left alone.

    Returns the stored (x, y), or None when the map has no pixel size.
    """
    if not entity_id or not map_data.image_width or not map_data.image_height:
        return None
    x, y = drop_to_map_pixels(drop_x, drop_y, map_rect, map_data.image_width, map_data.image_height)
    await store.update(join_path(tokens_path(map_data.id), sanitize_id(entity_id)), {"x": x, "y": y})
    return x, y


async def toggle_visibility(store: KeyedMutableStore, map_data: MapData, entity_id: str) -> Optional[bool]:
    """Flip one token's visibility. Returns the new value, or None if there is no token."""
    sid = sanitize_id(entity_id)
    token = map_data.tokens.get(sid)
    if token is None:
        return None
    visible = not token.visible
    await store.set(join_path(tokens_path(map_data.id), sid, "visible"), visible)
    return visible
