"""Request/response models for the video API.

Field names are camelCase on the wire to match the editor client.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from thumbreel.services.presets import (
    AI_VIDEO_DEFAULT_DURATION,
    AIVideoPlatform,
    AIVideoStyle,
    ThumbnailAnimation,
)


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoJobResponse(ApiModel):
    """Returned when a render is accepted."""
    message: str = "Video processing started"
    video_id: str
    job_id: str
    estimated_time: int = Field(description="Estimated render time in seconds")


class AnimatedThumbnailRequest(ApiModel):
    image_url: str = Field(min_length=1)
    animation_type: ThumbnailAnimation | None = None
    duration: float | None = Field(default=None, gt=0, le=60)


class AIVideoRequest(ApiModel):
    prompt: str = Field(min_length=1)
    platform: AIVideoPlatform = "universal"
    duration: float = Field(default=AI_VIDEO_DEFAULT_DURATION, gt=0, le=60)
    style: AIVideoStyle = "modern"
    include_text: bool = True
    # Accepted for client compatibility; generated videos carry no soundtrack
    include_music: bool = False
    color_scheme: str | None = Field(default=None, pattern=r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})$")


class CapabilitiesResponse(ApiModel):
    ffmpeg: bool
    video_creation: bool = True
    full_video_features: bool
    message: str
    installation_guide: dict[str, Any] | None = None


class RenderJobResponse(ApiModel):
    id: str
    video_id: str
    state: str
    progress: int
    stage: str | None = None
    frames_total: int
    frames_rendered: int
    output_kind: str
    output_url: str | None = None
    download_url: str | None = None
    degraded: bool = False
    error_message: str | None = None
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class VideoStatusResponse(ApiModel):
    status: str = "completed"
    video_url: str
    download_url: str
    created_at: datetime


class MediaResponse(ApiModel):
    id: str
    url: str
    processed: bool = True
    type: str
    template: str
    downloaded: bool
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
