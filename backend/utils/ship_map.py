from typing import List

from models.game import (
    BLUEWATER_BAY_X,
    BLUEWATER_BAY_Y,
    CRIMSON_COVE_Y,
    KRAKEN_Y,
    Position,
)

SHIP = "@"
START = "o"
BLUEWATER = "B"
CRIMSON = "C"
KRAKEN = "K"
SEA = "."


def zone_glyph(x: int, y: int) -> str:
    """Glyph for an empty sea cell, following the same zone rules as the win check."""
    if x >= BLUEWATER_BAY_X and y >= BLUEWATER_BAY_Y:
        return BLUEWATER
    if x >= BLUEWATER_BAY_X and y <= CRIMSON_COVE_Y:
        return CRIMSON
    if y >= KRAKEN_Y:
        return KRAKEN
    return SEA


def render_ship_map(position: Position, margin: int = 1) -> str:
    """Render the sea as a monospace grid, north at the top."""
    min_x = min(-margin, position.x - margin)
    max_x = max(BLUEWATER_BAY_X + margin, position.x + margin)
    min_y = min(CRIMSON_COVE_Y - margin, position.y - margin)
    max_y = max(KRAKEN_Y + margin, position.y + margin)

    rows: List[str] = []
    for y in range(max_y, min_y - 1, -1):
        cells = []
        for x in range(min_x, max_x + 1):
            if (x, y) == position.as_tuple():
                cells.append(SHIP)
            elif (x, y) == (0, 0):
                cells.append(START)
            else:
                cells.append(zone_glyph(x, y))
        rows.append("".join(cells))

    legend = (
        f"{SHIP} ship ({position.x}, {position.y})  {BLUEWATER} Bluewater Bay  "
        f"{CRIMSON} Crimson Cove  {KRAKEN} Kraken"
    )
    return "```\n" + "\n".join(rows) + "\n```\n" + legend
