from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PageTurn = Literal["prev", "next"]

# horizontal drag required to turn the page
SWIPE_THRESHOLD = 60
# movement below which a touch counts as a tap
TAP_THRESHOLD = 12
# edge tap zones, as a fraction of screen width
EDGE_TAP_ZONE = 0.20
# drags must start inside this band
DRAG_SAFE_MIN = 0.15
DRAG_SAFE_MAX = 0.85
# reserved for the OS back gesture
SYSTEM_EDGE = 20


@dataclass(frozen=True)
class TouchPoint:
    x: float
    y: float


def classify_touch(start: TouchPoint, end: TouchPoint, screen_width: float) -> PageTurn | None:
    dx = end.x - start.x
    dy = end.y - start.y

    if abs(dy) > abs(dx) * 1.2:
        return None

    if abs(dx) < TAP_THRESHOLD and abs(dy) < TAP_THRESHOLD:
        if SYSTEM_EDGE < end.x < screen_width * EDGE_TAP_ZONE:
            return "prev"
        if end.x > screen_width * (1 - EDGE_TAP_ZONE):
            return "next"
        return None

    in_safe_zone = screen_width * DRAG_SAFE_MIN < start.x < screen_width * DRAG_SAFE_MAX and start.x > SYSTEM_EDGE
    if in_safe_zone and abs(dx) > SWIPE_THRESHOLD:
        return "prev" if dx > 0 else "next"
    return None
