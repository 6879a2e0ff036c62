"""Animation evaluator.

Computes the transform a layer has at a given layer-local time by applying
every keyframe animation whose window contains that time. Pure and
deterministic, safe to call from the frame worker threads.
"""

from dataclasses import dataclass, replace
from typing import Any

from thumbreel.schemas.composition import Animation, Layer
from thumbreel.utils.interpolation import (
    clamp,
    get_easing_function,
    lerp,
    oscillate,
    window_progress,
)

# Transform properties each animation variant is allowed to drive
DRIVEN_PROPERTIES: dict[str, tuple[str, ...]] = {
    "fade": ("opacity", "scale"),
    "slide": ("x", "y"),
    "zoom": ("scale", "opacity"),
    "pulse": ("scale", "opacity"),
    "bounce": ("scale", "opacity"),
    "rotate": ("rotation",),
}

OSCILLATING_TYPES = frozenset({"pulse", "bounce"})


@dataclass(frozen=True)
class Transform:
    """Evaluated transform for one layer in one frame."""

    x: float = 0.0
    y: float = 0.0
    rotation: float = 0.0
    opacity: float = 1.0
    scale: float = 1.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "x": self.x,
            "y": self.y,
            "rotation": self.rotation,
            "opacity": self.opacity,
            "scale": self.scale,
        }


def base_transform(layer: Layer) -> Transform:
    """Transform of a layer with no animation applied."""
    return Transform(
        x=layer.position.x,
        y=layer.position.y,
        rotation=layer.rotation,
        opacity=layer.opacity,
        scale=1.0,
    )


def is_active(animation: Animation, local_time: float) -> bool:
    return animation.start_time <= local_time <= animation.end_time


def active_animations(layer: Layer, local_time: float) -> list[Animation]:
    """Animations acting at ``local_time`` in application order.

    Ordered by (start_time, list index) so that when two animations drive
    the same property, the later-starting one is applied last and wins.
    """
    indexed = [
        (anim.start_time, idx, anim)
        for idx, anim in enumerate(layer.animations)
        if is_active(anim, local_time)
    ]
    indexed.sort(key=lambda item: (item[0], item[1]))
    return [anim for _, _, anim in indexed]


def animation_parameter(animation: Animation, local_time: float) -> float:
    """Eased interpolation parameter of an animation at ``local_time``."""
    progress = window_progress(local_time, animation.start_time, animation.duration)
    eased = get_easing_function(animation.easing)(progress)
    if animation.type in OSCILLATING_TYPES:
        return oscillate(eased)
    return eased


def apply_animation(transform: Transform, animation: Animation, local_time: float) -> Transform:
    """Apply one animation's interpolated values on top of ``transform``.

    A property is only touched when both keyframes specify it.
    """
    t = animation_parameter(animation, local_time)
    start = animation.properties.from_
    end = animation.properties.to
    updates: dict[str, float] = {}
    for prop in DRIVEN_PROPERTIES[animation.type]:
        from_value = getattr(start, prop)
        to_value = getattr(end, prop)
        if from_value is None or to_value is None:
            continue
        updates[prop] = lerp(from_value, to_value, t)
    if not updates:
        return transform
    return replace(transform, **updates)


def evaluate(layer: Layer, local_time: float) -> Transform:
    """Transform of ``layer`` at layer-local time ``local_time``.

    Starts from the layer's base transform (scale 1) and applies active
    animations in order. Opacity is clamped to [0, 1] and scale to >= 0.
    """
    transform = base_transform(layer)
    for animation in active_animations(layer, local_time):
        transform = apply_animation(transform, animation, local_time)
    return replace(
        transform,
        opacity=clamp(transform.opacity),
        scale=max(0.0, transform.scale),
    )
