"""
Map Viewport — per-viewer pan and zoom over a map image.

Never written to the shared store: every viewer (the DM and each
player) has its own ViewportController.

Coordinate frames:
    screen   pixels relative to the viewport's top-left corner
    content  the fitted map at zoom 1, origin at its top-left corner

    screen = pan + content * zoom
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

logger = logging.getLogger("Viewport")

ZOOM_FACTOR = 1.1
MIN_ZOOM = 0.25
MAX_ZOOM = 8.0
PRIMARY_BUTTON = 0


@dataclass(frozen=True)
class Rect:
    """A screen-space box (what a bounding-client-rect reports)."""

    left: float
    top: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height


@dataclass
class ViewState:
    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def fit_map(
    image_width: Optional[float],
    image_height: Optional[float],
    view_width: float,
    view_height: float,
) -> Optional[Tuple[float, float]]:
    """Size of the map fitted into the view, aspect ratio preserved.

    A map wider (relative to its height) than the view is bound by the
    view's width; otherwise by its height. None when either size is unknown.
    """
    if not image_width or not image_height or not view_width or not view_height:
        return None
    image_ratio = image_width / image_height
    view_ratio = view_width / view_height
    if image_ratio > view_ratio:
        return view_width, view_width / image_ratio
    return view_height * image_ratio, view_height


class ViewportController:
    """Wheel zoom around the cursor, drag to pan, reset on map change."""

    def __init__(self):
        self.view = ViewState()
        self._panning = False
        self._pan_start = (0.0, 0.0)
        self._view_start = (0.0, 0.0)
        self._map_id: Optional[str] = None

    @property
    def is_panning(self) -> bool:
        return self._panning

    def wheel(self, delta_y: float, cursor_x: float, cursor_y: float) -> ViewState:
        """Zoom in (delta_y < 0) or out, keeping the point under the cursor fixed."""
        old = self.view
        new_zoom = old.zoom * ZOOM_FACTOR if delta_y < 0 else old.zoom / ZOOM_FACTOR
        new_zoom = clamp(new_zoom, MIN_ZOOM, MAX_ZOOM)
        ratio = new_zoom / old.zoom
        self.view = ViewState(
            zoom=new_zoom,
            pan_x=cursor_x - (cursor_x - old.pan_x) * ratio,
            pan_y=cursor_y - (cursor_y - old.pan_y) * ratio,
        )
        return self.view

    def begin_pan(self, x: float, y: float, button: int = PRIMARY_BUTTON, on_token: bool = False) -> bool:
        """Start a drag. Ignored for non-primary buttons and drags that start on a token."""
        if button != PRIMARY_BUTTON or on_token:
            return False
        self._panning = True
        self._pan_start = (x, y)
        self._view_start = (self.view.pan_x, self.view.pan_y)
        return True

    def move_pan(self, x: float, y: float) -> ViewState:
        if self._panning:
            dx = x - self._pan_start[0]
            dy = y - self._pan_start[1]
            self.view = ViewState(self.view.zoom, self._view_start[0] + dx, self._view_start[1] + dy)
        return self.view

    def end_pan(self) -> None:
        self._panning = False

    def reset(self) -> None:
        self.view = ViewState()
        self._panning = False

    def on_active_map_changed(self, map_id: Optional[str]) -> None:
        if map_id != self._map_id:
            logger.debug(f"Active map changed to {map_id}; view reset")
            self._map_id = map_id
            self.reset()

    def screen_to_content(self, x: float, y: float) -> Tuple[float, float]:
        v = self.view
        return (x - v.pan_x) / v.zoom, (y - v.pan_y) / v.zoom

    def content_to_screen(self, x: float, y: float) -> Tuple[float, float]:
        v = self.view
        return v.pan_x + x * v.zoom, v.pan_y + y * v.zoom

    def map_rect(
        self,
        viewport: Rect,
        image_width: Optional[float],
        image_height: Optional[float],
    ) -> Optional[Rect]:
        """Where the map image is drawn on screen, in the viewport's frame of reference."""
        fitted = fit_map(image_width, image_height, viewport.width, viewport.height)
        if fitted is None:
            return None
        v = self.view
        return Rect(
            left=viewport.left + v.pan_x,
            top=viewport.top + v.pan_y,
            width=fitted[0] * v.zoom,
            height=fitted[1] * v.zoom,
        )
