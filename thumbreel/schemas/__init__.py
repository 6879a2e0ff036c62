from thumbreel.schemas.composition import (
    Animation,
    Composition,
    ExportSettings,
    ImageLayer,
    Layer,
    ShapeLayer,
    TextLayer,
    VideoLayer,
    parse_composition,
)
from thumbreel.schemas.video import AnimatedThumbnailRequest, RenderJobResponse, VideoJobResponse

__all__ = [
    "Composition",
    "ExportSettings",
    "Layer",
    "TextLayer",
    "ShapeLayer",
    "ImageLayer",
    "VideoLayer",
    "Animation",
    "parse_composition",
    "AnimatedThumbnailRequest",
    "RenderJobResponse",
    "VideoJobResponse",
]
