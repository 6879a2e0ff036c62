"""Interpolation utilities for keyframe animation.

Provides the easing curves the template editor exposes and the small
interpolation helpers the animation evaluator builds on.

Usage:
    from thumbreel.utils.interpolation import get_easing_function, lerp

    eased = get_easing_function("ease-out")(0.5)
    value = lerp(0.0, 1.0, eased)
"""

import math
from typing import Callable


# =============================================================================
# Easing Functions
# =============================================================================


def linear(t: float) -> float:
    """Linear easing (no easing)."""
    return t


def ease_in(t: float) -> float:
    """Ease in (quadratic)."""
    return t * t


def ease_out(t: float) -> float:
    """Ease out (quadratic)."""
    return 1 - (1 - t) * (1 - t)


def ease_in_out(t: float) -> float:
    """Ease in-out (quadratic)."""
    if t < 0.5:
        return 2 * t * t
    else:
        return 1 - (-2 * t + 2) ** 2 / 2


def bounce(t: float) -> float:
    """Decaying oscillation that settles on 1.

    Overshoots and undershoots the target before landing, so it is not
    monotonic. Equals 0 at t=0 and 1 at t=1.
    """
    return 1 - (1 - t) ** 3 * math.cos(t * math.pi * 4)


class Easing:
    """Collection of easing functions."""

    linear = linear
    ease_in = ease_in
    ease_out = ease_out
    ease_in_out = ease_in_out
    bounce = bounce


# Easing name -> function lookup for JSON/string-based configuration
EASING_FUNCTIONS: dict[str, Callable[[float], float]] = {
    "linear": linear,
    "ease-in": ease_in,
    "ease-out": ease_out,
    "ease-in-out": ease_in_out,
    "bounce": bounce,
}


def get_easing_function(name: str) -> Callable[[float], float]:
    """Get an easing function by name.

    Args:
        name: Easing function name (e.g., "ease-in-out", "linear")

    Returns:
        Easing function

    Raises:
        ValueError: If the easing name is not recognized
    """
    fn = EASING_FUNCTIONS.get(name)
    if fn is None:
        raise ValueError(
            f"Unknown easing function: {name}. "
            f"Available: {', '.join(EASING_FUNCTIONS.keys())}"
        )
    return fn


# =============================================================================
# Core Interpolation
# =============================================================================


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    """Clamp a value into [low, high]."""
    return max(low, min(high, value))


def lerp(start: float, end: float, t: float) -> float:
    """Linear interpolation between start and end."""
    return start + (end - start) * t


def window_progress(time: float, start: float, duration: float) -> float:
    """Linear progress of ``time`` through the window [start, start+duration].

    Returns a value clamped to [0, 1]. A zero-length window counts as
    complete.
    """
    if duration <= 0:
        return 1.0
    return clamp((time - start) / duration)


def oscillate(t: float) -> float:
    """Map progress to one full sine cycle in [0, 1].

    Starts and ends at 0.5, peaks at t=0.25 and dips at t=0.75.
    """
    return math.sin(t * math.pi * 2) * 0.5 + 0.5
