"""Composition presets built from a few request fields.

The animated thumbnail preset turns a still thumbnail into a short clip: one
full-frame image layer with a single entrance or loop animation.

The AI video preset builds a template from a prompt: a gradient background
in the style's palette and, optionally, timed captions picked by keywords
in the prompt. Caption layouts are authored for a 1080x1920 canvas and
scaled to the platform resolution.
"""

from typing import Any, Literal

from thumbreel.exceptions import CompositionValidationError
from thumbreel.schemas.composition import Composition, parse_composition

ThumbnailAnimation = Literal["fade", "zoom", "pulse", "slide"]

ANIMATED_THUMBNAIL_WIDTH = 1280
ANIMATED_THUMBNAIL_HEIGHT = 720
ANIMATED_THUMBNAIL_DEFAULT_DURATION = 3.0
ANIMATED_THUMBNAIL_PREFIX = "animated"


def thumbnail_animations(animation_type: str | None, duration: float) -> list[dict[str, Any]]:
    """Animation list for the animated thumbnail preset.

    Unknown types get the default fade-in.
    """
    if animation_type == "zoom":
        return [{
            "id": "zoom-animation",
            "type": "zoom",
            "startTime": 0,
            "duration": duration,
            "easing": "ease-in-out",
            "properties": {"from": {"scale": 1}, "to": {"scale": 1.1}},
        }]
    if animation_type == "pulse":
        return [{
            "id": "pulse-animation",
            "type": "pulse",
            "startTime": 0,
            "duration": duration,
            "easing": "ease-in-out",
            "properties": {"from": {"scale": 1}, "to": {"scale": 1.05}},
        }]
    if animation_type == "slide":
        return [{
            "id": "slide-animation",
            "type": "slide",
            "startTime": 0,
            "duration": 1,
            "easing": "ease-out",
            "properties": {
                "from": {"x": -100, "opacity": 0},
                "to": {"x": ANIMATED_THUMBNAIL_WIDTH / 2, "opacity": 1},
            },
        }]
    return [{
        "id": "fade-animation",
        "type": "fade",
        "startTime": 0,
        "duration": 0.5,
        "easing": "ease-in",
        "properties": {"from": {"opacity": 0}, "to": {"opacity": 1}},
    }]


def build_animated_thumbnail(
    image_url: str,
    animation_type: str | None = None,
    duration: float | None = None,
) -> Composition:
    """Composition for an animated thumbnail (1280x720, mp4, high quality, 30 fps).

    Raises:
        CompositionValidationError: If the image URL is empty or the
            duration is not positive.
    """
    duration = duration or ANIMATED_THUMBNAIL_DEFAULT_DURATION
    resolution = {"width": ANIMATED_THUMBNAIL_WIDTH, "height": ANIMATED_THUMBNAIL_HEIGHT}
    payload = {
        "template": {
            "id": "animated-thumbnail",
            "name": "Animated Thumbnail",
            "resolution": resolution,
            "aspectRatio": "16:9",
        },
        "layers": [
            {
                "id": "thumbnail-image",
                "type": "image",
                "name": "Thumbnail",
                "startTime": 0,
                "duration": duration,
                "properties": {"src": image_url, "fit": "cover"},
                "position": {"x": ANIMATED_THUMBNAIL_WIDTH / 2, "y": ANIMATED_THUMBNAIL_HEIGHT / 2},
                "size": resolution,
                "zIndex": 0,
                "animations": thumbnail_animations(animation_type, duration),
            }
        ],
        "settings": {"duration": duration, "backgroundColor": "#000000"},
        "exportSettings": {
            "format": "mp4",
            "quality": "high",
            "fps": 30,
            "resolution": resolution,
        },
    }
    return parse_composition(payload)


# =============================================================================
# AI video
# =============================================================================

AIVideoPlatform = Literal["youtube", "tiktok", "instagram", "universal"]
AIVideoStyle = Literal["modern", "minimalist", "energetic", "professional", "fun", "dramatic"]

AI_VIDEO_PREFIX = "ai_video"
AI_VIDEO_DEFAULT_DURATION = 10.0

# Caption geometry below is laid out on this canvas
AI_LAYOUT_WIDTH = 1080
AI_LAYOUT_HEIGHT = 1920

PLATFORM_RESOLUTIONS: dict[str, dict[str, Any]] = {
    "youtube": {"width": 1080, "height": 1920, "aspectRatio": "9:16"},
    "tiktok": {"width": 1080, "height": 1920, "aspectRatio": "9:16"},
    "instagram": {"width": 1080, "height": 1920, "aspectRatio": "9:16"},
    "universal": {"width": 1920, "height": 1080, "aspectRatio": "16:9"},
}

STYLE_PALETTES: dict[str, dict[str, Any]] = {
    "modern": {"colors": ["#4F46E5", "#7C3AED", "#EC4899"], "font": "Helvetica Neue"},
    "minimalist": {"colors": ["#1F2937", "#374151", "#6B7280"], "font": "Arial"},
    "energetic": {"colors": ["#EF4444", "#F59E0B", "#10B981"], "font": "Impact"},
    "professional": {"colors": ["#1E40AF", "#3730A3", "#581C87"], "font": "Times New Roman"},
    "fun": {"colors": ["#EC4899", "#8B5CF6", "#06B6D4"], "font": "Comic Sans MS"},
    "dramatic": {"colors": ["#7F1D1D", "#92400E", "#1F2937"], "font": "Georgia"},
}

MOTIVATIONAL_KEYWORDS = ("motivat", "inspir", "success", "achieve")

# Caption times are absolute; each caption's animation starts with it
CAPTION_SETS: dict[str, list[dict[str, Any]]] = {
    "motivational": [
        {
            "text": "BELIEVE IN YOURSELF",
            "startTime": 1,
            "duration": 3,
            "position": {"x": 540, "y": 400},
            "size": {"width": 800, "height": 150},
            "fontSize": 90,
            "animation": {
                "type": "zoom",
                "duration": 1,
                "easing": "ease-out",
                "properties": {"from": {"scale": 0.5, "opacity": 0}, "to": {"scale": 1, "opacity": 1}},
            },
        },
        {
            "text": "SUCCESS STARTS TODAY",
            "startTime": 4,
            "duration": 3,
            "position": {"x": 540, "y": 800},
            "size": {"width": 700, "height": 120},
            "fontSize": 70,
            "animation": {
                "type": "slide",
                "duration": 0.8,
                "easing": "ease-out",
                "properties": {"from": {"y": 1000, "opacity": 0}, "to": {"y": 800, "opacity": 1}},
            },
        },
    ],
    "educational": [
        {
            "text": "DID YOU KNOW?",
            "startTime": 0.5,
            "duration": 2,
            "position": {"x": 540, "y": 300},
            "size": {"width": 600, "height": 100},
            "fontSize": 80,
            "animation": {
                "type": "fade",
                "duration": 0.8,
                "easing": "ease-out",
                "properties": {"from": {"opacity": 0}, "to": {"opacity": 1}},
            },
        },
        {
            "text": "Learn something new today",
            "startTime": 3,
            "duration": 4,
            "position": {"x": 540, "y": 600},
            "size": {"width": 800, "height": 200},
            "fontSize": 60,
            "animation": {
                "type": "slide",
                "duration": 1,
                "easing": "ease-out",
                "properties": {"from": {"x": 800, "opacity": 0}, "to": {"x": 540, "opacity": 1}},
            },
        },
    ],
}


def caption_set_for_prompt(prompt: str) -> str:
    """Pick a caption set by keyword; anything else is educational."""
    lowered = prompt.lower()
    if any(keyword in lowered for keyword in MOTIVATIONAL_KEYWORDS):
        return "motivational"
    return "educational"


def _scale_keyframe(keyframe: dict[str, Any], sx: float, sy: float) -> dict[str, Any]:
    scaled = dict(keyframe)
    if "x" in scaled:
        scaled["x"] = scaled["x"] * sx
    if "y" in scaled:
        scaled["y"] = scaled["y"] * sy
    return scaled


def _caption_layers(
    captions: list[dict[str, Any]],
    duration: float,
    width: int,
    height: int,
    font: str,
) -> list[dict[str, Any]]:
    sx = width / AI_LAYOUT_WIDTH
    sy = height / AI_LAYOUT_HEIGHT
    scale = min(sx, sy)
    layers = []
    for index, caption in enumerate(captions):
        start = caption["startTime"]
        if start >= duration:
            continue
        layer_duration = min(caption["duration"], duration - start)
        animation = caption["animation"]
        layers.append({
            "id": f"ai-text-{index}",
            "type": "text",
            "name": f"AI Text {index + 1}",
            "startTime": start,
            "duration": layer_duration,
            "properties": {
                "text": caption["text"],
                "fontSize": caption["fontSize"] * scale,
                "fontFamily": font,
                "color": "#FFFFFF",
                "strokeColor": "#000000",
                "strokeWidth": 3,
                "textAlign": "center",
            },
            "position": {"x": caption["position"]["x"] * sx, "y": caption["position"]["y"] * sy},
            "size": {
                "width": caption["size"]["width"] * scale,
                "height": caption["size"]["height"] * scale,
            },
            "zIndex": 10 + index,
            "animations": [{
                "id": f"ai-text-{index}-{animation['type']}",
                "type": animation["type"],
                "startTime": 0,
                "duration": min(animation["duration"], layer_duration),
                "easing": animation["easing"],
                "properties": {
                    "from": _scale_keyframe(animation["properties"]["from"], sx, sy),
                    "to": _scale_keyframe(animation["properties"]["to"], sx, sy),
                },
            }],
        })
    return layers


def build_ai_video_template(
    prompt: str,
    platform: str = "universal",
    duration: float | None = None,
    style: str = "modern",
    include_text: bool = True,
    color_scheme: str | None = None,
) -> Composition:
    """Composition generated from a prompt (mp4, high quality, 30 fps).

    Deterministic: the same arguments always give the same composition.
    ``color_scheme`` replaces the first colour of the style's gradient.
    Unknown platforms and styles use ``universal`` and ``modern``.

    Raises:
        CompositionValidationError: If the prompt is blank or the duration
            is not positive.
    """
    if not prompt or not prompt.strip():
        raise CompositionValidationError(
            "Prompt is required",
            errors=[{"field": "prompt", "message": "Prompt is required"}],
        )
    duration = duration or AI_VIDEO_DEFAULT_DURATION
    screen = PLATFORM_RESOLUTIONS.get(platform, PLATFORM_RESOLUTIONS["universal"])
    palette = STYLE_PALETTES.get(style, STYLE_PALETTES["modern"])
    width, height = screen["width"], screen["height"]
    resolution = {"width": width, "height": height}

    colors = list(palette["colors"])
    if color_scheme:
        colors[0] = color_scheme

    layers: list[dict[str, Any]] = [{
        "id": "ai-bg",
        "type": "shape",
        "name": "AI Background",
        "startTime": 0,
        "duration": duration,
        "properties": {
            "shape": "rectangle",
            "gradient": {"type": "linear", "colors": colors},
        },
        "position": {"x": width / 2, "y": height / 2},
        "size": resolution,
        "zIndex": 0,
    }]
    if include_text:
        captions = CAPTION_SETS[caption_set_for_prompt(prompt)]
        layers.extend(_caption_layers(captions, duration, width, height, palette["font"]))

    payload = {
        "template": {
            "id": "ai-generated",
            "name": "AI Generated Video",
            "resolution": resolution,
            "aspectRatio": screen["aspectRatio"],
        },
        "layers": layers,
        "settings": {"duration": duration, "backgroundColor": "#000000", "audioEnabled": False},
        "exportSettings": {
            "format": "mp4",
            "quality": "high",
            "fps": 30,
            "resolution": resolution,
        },
    }
    return parse_composition(payload)
