"""Color parsing helpers shared by the rasterizer painters."""

import logging

logger = logging.getLogger(__name__)

RGBA = tuple[int, int, int, int]

NAMED_COLORS: dict[str, str] = {
    "black": "#000000",
    "white": "#ffffff",
    "red": "#ff0000",
    "green": "#00ff00",
    "blue": "#0000ff",
    "yellow": "#ffff00",
    "transparent": "#00000000",
}


def hex_to_rgba(color: str | None, alpha: int = 255, fallback: RGBA = (255, 255, 255, 255)) -> RGBA:
    """Convert a hex color string (#RGB, #RRGGBB or #RRGGBBAA) to an RGBA tuple.

    A handful of CSS color names are accepted too. Unparseable input logs a
    warning and returns ``fallback``.
    """
    if not color:
        return fallback
    value = NAMED_COLORS.get(color.strip().lower(), color).strip().lstrip("#")
    try:
        if len(value) == 3:
            r, g, b = (int(c * 2, 16) for c in value)
            return (r, g, b, alpha)
        if len(value) == 6:
            return (int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16), alpha)
        if len(value) == 8:
            return (
                int(value[0:2], 16),
                int(value[2:4], 16),
                int(value[4:6], 16),
                int(value[6:8], 16),
            )
    except ValueError:
        pass
    logger.warning(f"[RENDER] Unparseable color '{color}', using fallback")
    return fallback
