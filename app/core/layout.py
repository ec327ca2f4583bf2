"""Non-overlapping placement of capability nodes around a feature centroid.

Candidates are visited on expanding square rings around the centroid, at a
grid spacing of node size plus padding. A candidate is accepted when its
padded box does not intersect the padded box of any node already in the
same feature. Only that feature's nodes are obstacles; other features may
overlap visually and are moved by the user.

Usage:
    from app.core.layout import place, place_many

    pos = place(existing_nodes, centroid, width=288, height=160)
    positions = place_many(existing_nodes, centroid, count=3, width=288, height=160)
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, Iterator

from app.core.schemas_canvas import Capability, Position

DEFAULT_CANVAS_POINT = Position(x=400.0, y=300.0)

DEFAULT_PADDING = 40
DEFAULT_MAX_RINGS = 10


@dataclass(frozen=True)
class Box:
    """Axis-aligned node footprint (top-left origin)."""
    x: float
    y: float
    width: float
    height: float

    def padded(self, padding: float) -> Box:
        half = padding / 2
        return Box(self.x - half, self.y - half, self.width + padding, self.height + padding)

    def intersects(self, other: Box) -> bool:
        # Touching edges do not count as overlap
        return (
            self.x < other.x + other.width
            and other.x < self.x + self.width
            and self.y < other.y + other.height
            and other.y < self.y + self.height
        )


def boxes_for(nodes: Iterable[Capability]) -> list[Box]:
    return [Box(n.position.x, n.position.y, n.width, n.height) for n in nodes]


def _ring_offsets(ring: int) -> Iterator[tuple[int, int]]:
    """Grid offsets on the square ring at Chebyshev distance `ring`.

    Order is deterministic: top edge left to right, right edge downwards,
    bottom edge right to left, left edge upwards.
    """
    if ring == 0:
        yield (0, 0)
        return
    for dx in range(-ring, ring + 1):
        yield (dx, -ring)
    for dy in range(-ring + 1, ring + 1):
        yield (ring, dy)
    for dx in range(ring - 1, -ring - 1, -1):
        yield (dx, ring)
    for dy in range(ring - 1, -ring, -1):
        yield (-ring, dy)


def _is_free(candidate: Box, obstacles: list[Box], padding: float) -> bool:
    padded = candidate.padded(padding)
    return not any(padded.intersects(o.padded(padding)) for o in obstacles)


def _place_among(
    obstacles: list[Box],
    centroid: Position,
    width: int,
    height: int,
    padding: int,
    max_rings: int,
) -> Position:
    step_x = width + padding
    step_y = height + padding
    origin_x = centroid.x - width / 2
    origin_y = centroid.y - height / 2

    for ring in range(max_rings + 1):
        for dx, dy in _ring_offsets(ring):
            candidate = Box(origin_x + dx * step_x, origin_y + dy * step_y, width, height)
            if _is_free(candidate, obstacles, padding):
                return Position(x=candidate.x, y=candidate.y)

    # Search exhausted: stack below the outermost ring so placement terminates
    return Position(
        x=origin_x + (max_rings + 1) * step_x,
        y=origin_y + len(obstacles) * step_y,
    )


def place(
    existing: Iterable[Capability],
    centroid: Position | None,
    width: int,
    height: int,
    padding: int = DEFAULT_PADDING,
    max_rings: int = DEFAULT_MAX_RINGS,
) -> Position:
    """Find a free position for one node near `centroid`.

    Args:
        existing: Nodes already in the same feature
        centroid: Feature centroid (DEFAULT_CANVAS_POINT when None)
        width: Node width
        height: Node height
        padding: Required gap between nodes
        max_rings: Rings searched before the deterministic fallback

    Returns:
        Top-left position for the new node
    """
    return _place_among(
        boxes_for(existing), centroid or DEFAULT_CANVAS_POINT, width, height, padding, max_rings
    )


def place_many(
    existing: Iterable[Capability],
    centroid: Position | None,
    count: int,
    width: int,
    height: int,
    padding: int = DEFAULT_PADDING,
    max_rings: int = DEFAULT_MAX_RINGS,
) -> list[Position]:
    """Place `count` nodes; each placed node is an obstacle for the next."""
    obstacles = boxes_for(existing)
    anchor = centroid or DEFAULT_CANVAS_POINT
    positions: list[Position] = []
    for _ in range(count):
        pos = _place_among(obstacles, anchor, width, height, padding, max_rings)
        positions.append(pos)
        obstacles.append(Box(pos.x, pos.y, width, height))
    return positions


def random_centroid(rng: random.Random | None = None) -> Position:
    """Pick a canvas position for a brand-new feature."""
    rng = rng or random.Random()
    return Position(x=100 + rng.random() * 400, y=100 + rng.random() * 300)
