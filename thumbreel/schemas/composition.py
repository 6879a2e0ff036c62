"""Layer & timeline model for a renderable composition.

Payloads arrive in the editor's camelCase JSON (``startTime``, ``zIndex``,
``exportSettings``); attributes are snake_case. Models are frozen once
validated so a job can hold its composition as a snapshot.
"""

import math
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from thumbreel.exceptions import CompositionValidationError

# Layers may overrun the composition end by this much (seconds) before the
# composition is rejected. Absorbs float drift from the editor's timeline.
LAYER_END_TOLERANCE = 0.05

EasingName = Literal["linear", "ease-in", "ease-out", "ease-in-out", "bounce"]
AnimationType = Literal["fade", "slide", "pulse", "bounce", "zoom", "rotate"]
ExportFormat = Literal["mp4", "gif", "webm"]
ExportQuality = Literal["low", "medium", "high", "ultra"]
FitMode = Literal["contain", "cover", "fill"]


class CamelModel(BaseModel):
    """Base for composition models: camelCase aliases, immutable."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


# =============================================================================
# Geometry
# =============================================================================


class Resolution(CamelModel):
    width: int = Field(gt=0, le=7680)
    height: int = Field(gt=0, le=4320)


class Position(CamelModel):
    """Layer center in canvas pixels."""
    x: float = 0
    y: float = 0


class Size(CamelModel):
    width: float = Field(default=100, ge=0)
    height: float = Field(default=100, ge=0)


# =============================================================================
# Animations
# =============================================================================


class PartialTransform(CamelModel):
    """Subset of transform properties an animation keyframe sets."""
    opacity: float | None = None
    scale: float | None = None
    x: float | None = None
    y: float | None = None
    rotation: float | None = None


class AnimationProperties(CamelModel):
    from_: PartialTransform = Field(default_factory=PartialTransform, alias="from")
    to: PartialTransform = Field(default_factory=PartialTransform)


class Animation(CamelModel):
    """Keyframe animation in layer-local time."""
    id: str | None = None
    type: AnimationType
    start_time: float = Field(default=0, ge=0)
    duration: float = Field(gt=0)
    easing: EasingName = "linear"
    properties: AnimationProperties = Field(default_factory=AnimationProperties)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration


# =============================================================================
# Layer variants
# =============================================================================


class TextProperties(CamelModel):
    text: str = ""
    font_family: str = "Arial"
    font_size: float = Field(default=48, gt=0)
    font_weight: str = "normal"
    color: str = "#ffffff"
    stroke_color: str | None = None
    stroke_width: float = Field(default=0, ge=0)
    text_align: Literal["left", "center", "right"] = "center"
    line_height: float = Field(default=1.2, gt=0)


class Gradient(CamelModel):
    type: Literal["linear", "radial"] = "linear"
    colors: list[str] = Field(min_length=2)


class ShapeProperties(CamelModel):
    shape: Literal["rectangle", "circle", "line"] = "rectangle"
    color: str = "#ffffff"
    gradient: Gradient | None = None
    stroke_color: str | None = None
    stroke_width: float = Field(default=0, ge=0)


class _SourceProperties(CamelModel):
    src: str
    fit: FitMode = "contain"

    @field_validator("src")
    @classmethod
    def validate_src(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("src must not be empty")
        return v


class ImageProperties(_SourceProperties):
    pass


class VideoProperties(_SourceProperties):
    volume: float = Field(default=1.0, ge=0, le=1)
    playback_rate: float = Field(default=1.0, gt=0)


class _LayerBase(CamelModel):
    id: str
    name: str = ""
    visible: bool = True
    locked: bool = False  # editor-only, ignored by rendering
    start_time: float = Field(default=0, ge=0)
    duration: float = Field(gt=0)
    position: Position = Field(default_factory=Position)
    size: Size = Field(default_factory=Size)
    rotation: float = 0
    opacity: float = Field(default=1.0, ge=0, le=1)
    z_index: int = 0
    animations: list[Animation] = Field(default_factory=list)

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def is_visible_at(self, t: float) -> bool:
        return self.visible and self.start_time <= t <= self.end_time


class TextLayer(_LayerBase):
    type: Literal["text"] = "text"
    properties: TextProperties = Field(default_factory=TextProperties)


class ShapeLayer(_LayerBase):
    type: Literal["shape"] = "shape"
    properties: ShapeProperties = Field(default_factory=ShapeProperties)


class ImageLayer(_LayerBase):
    type: Literal["image"] = "image"
    properties: ImageProperties


class VideoLayer(_LayerBase):
    type: Literal["video"] = "video"
    properties: VideoProperties


Layer = Annotated[
    Union[TextLayer, ShapeLayer, ImageLayer, VideoLayer],
    Field(discriminator="type"),
]


# =============================================================================
# Composition
# =============================================================================


class TemplateRef(CamelModel):
    id: str | None = None
    name: str = "Custom Video"
    resolution: Resolution | None = None
    aspect_ratio: str | None = None


class CompositionSettings(CamelModel):
    duration: float = Field(gt=0, le=600)
    background_color: str = "#000000"
    audio_enabled: bool = False
    audio_source: str | None = None


class ExportSettings(CamelModel):
    format: ExportFormat = "mp4"
    quality: ExportQuality = "medium"
    fps: Literal[24, 25, 30, 60] = 30
    resolution: Resolution = Field(default_factory=lambda: Resolution(width=1920, height=1080))
    platform: Literal["youtube", "tiktok", "instagram", "universal"] | None = None
    optimize_for: Literal["engagement", "quality", "filesize"] | None = None


class Composition(CamelModel):
    """A validated, immutable render request."""

    template: TemplateRef = Field(default_factory=TemplateRef)
    layers: list[Layer] = Field(default_factory=list)
    settings: CompositionSettings
    export_settings: ExportSettings = Field(default_factory=ExportSettings)

    @model_validator(mode="after")
    def validate_layer_windows(self) -> "Composition":
        limit = self.settings.duration + LAYER_END_TOLERANCE
        for layer in self.layers:
            if layer.end_time > limit:
                raise ValueError(
                    f"Layer '{layer.id}' ends at {layer.end_time:.3f}s, "
                    f"beyond composition duration {self.settings.duration:.3f}s"
                )
        return self

    @property
    def duration(self) -> float:
        return self.settings.duration

    @property
    def fps(self) -> int:
        return self.export_settings.fps

    @property
    def total_frames(self) -> int:
        # round() absorbs float noise such as 0.1 * 30 = 3.0000000000000004
        return math.ceil(round(self.settings.duration * self.export_settings.fps, 6))

    @property
    def canvas_size(self) -> tuple[int, int]:
        """Coordinate space the layers are authored in."""
        res = self.template.resolution or self.export_settings.resolution
        return res.width, res.height

    @property
    def output_size(self) -> tuple[int, int]:
        res = self.export_settings.resolution
        return res.width, res.height

    def frame_time(self, frame_index: int) -> float:
        return frame_index / self.export_settings.fps

    def layers_visible_at(self, t: float) -> list[Layer]:
        """Eligible layers at global time ``t``, bottom to top.

        Sorted by z_index ascending; equal z_index keeps input order.
        """
        eligible = [layer for layer in self.layers if layer.is_visible_at(t)]
        return sorted(eligible, key=lambda layer: layer.z_index)


def _format_errors(exc: PydanticValidationError) -> list[dict[str, Any]]:
    return [
        {
            "field": ".".join(str(part) for part in err["loc"]),
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors(include_url=False)
    ]


def parse_composition(payload: dict[str, Any] | Composition) -> Composition:
    """Validate a raw payload into a Composition.

    Raises:
        CompositionValidationError: If any field is malformed, the duration is
            not positive, a layer overruns the composition, or an image/video
            layer has no source.
    """
    if isinstance(payload, Composition):
        return payload
    try:
        return Composition.model_validate(payload)
    except PydanticValidationError as e:
        errors = _format_errors(e)
        first = errors[0] if errors else None
        message = "Invalid composition"
        if first:
            message = f"Invalid composition: {first['field'] or 'composition'}: {first['message']}"
        raise CompositionValidationError(message, errors=errors) from e
