"""Encoding pipeline: frame sequence to video with FFmpeg.

Consumes the ``frame_%06d.png`` sequence a job wrote into its scratch
directory in a single ascending pass, with exactly one encoder process per
job. Progress is parsed from the encoder's stderr. When the encoder binary is
not available the work is handed to the degraded-mode fallback.
"""

import asyncio
import contextlib
import logging
import re
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from thumbreel.exceptions import EncodeProcessError, EncodeSpawnError
from thumbreel.render.fallback import DegradedModeFallback, ProgressCallback, report_progress
from thumbreel.render.rasterizer import FRAME_PATTERN
from thumbreel.schemas.composition import ExportSettings

logger = logging.getLogger(__name__)

# quality tier -> (crf, x264 preset)
QUALITY_PRESETS: dict[str, tuple[int, str]] = {
    "low": (28, "fast"),
    "medium": (23, "medium"),
    "high": (18, "slow"),
    "ultra": (15, "veryslow"),
}

GIF_FILTER = "fps=15,scale=640:-1:flags=lanczos,split[a][b];[a]palettegen[p];[b][p]paletteuse"

FRAME_PROGRESS_RE = re.compile(r"frame=\s*(\d+)")
LINE_SPLIT_RE = re.compile(rb"[\r\n]")

INSTALLATION_GUIDE = {
    "linux": "apt-get install ffmpeg",
    "macos": "brew install ffmpeg",
    "windows": {
        "chocolatey": "choco install ffmpeg",
        "manual": "Download from https://www.gyan.dev/ffmpeg/builds/ and add to PATH",
    },
    "note": "Restart the server after installing FFmpeg",
}


@dataclass
class EncodeResult:
    """Outcome of an encode."""

    path: Path
    degraded: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {"path": str(self.path), "degraded": self.degraded}


def count_frames(scratch_dir: Path) -> int:
    return len(list(Path(scratch_dir).glob("frame_*.png")))


class EncodingPipeline:
    """Wraps the FFmpeg binary for probing and frame-sequence encoding."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        fallback: DegradedModeFallback | None = None,
        audio_bitrate: str = "128k",
        diagnostic_tail_lines: int = 20,
        probe_timeout_s: float = 10.0,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.fallback = fallback or DegradedModeFallback()
        self.audio_bitrate = audio_bitrate
        self.diagnostic_tail_lines = diagnostic_tail_lines
        self.probe_timeout_s = probe_timeout_s

    # =========================================================================
    # Probing
    # =========================================================================

    async def probe(self) -> bool:
        """Return True iff ``<ffmpeg> -version`` exits with status 0."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.ffmpeg_path,
                "-version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.info(f"[ENCODE] Encoder probe failed to start '{self.ffmpeg_path}': {e}")
            return False

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.probe_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"[ENCODE] Encoder probe timed out after {self.probe_timeout_s}s")
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            return False
        return returncode == 0

    async def capabilities(self) -> dict[str, Any]:
        """Capability flags reported to clients."""
        available = await self.probe()
        if available:
            message = "Full video creation capabilities available with FFmpeg"
        else:
            message = (
                "Basic video creation available. Install FFmpeg for full features "
                "(MP4, GIF, WebM encoding, audio mixing)."
            )
        return {
            "ffmpeg": available,
            "video_creation": True,
            "full_video_features": available,
            "message": message,
            "installation_guide": None if available else INSTALLATION_GUIDE,
        }

    # =========================================================================
    # Command building
    # =========================================================================

    def build_command(
        self,
        scratch_dir: Path,
        output_path: Path,
        export_settings: ExportSettings,
        audio_path: str | None = None,
    ) -> list[str]:
        """Build the encoder argument list for a frame sequence."""
        fmt = export_settings.format
        crf, preset = QUALITY_PRESETS[export_settings.quality]
        with_audio = bool(audio_path) and fmt != "gif"

        cmd = [
            self.ffmpeg_path,
            "-y",
            "-framerate", str(export_settings.fps),
            "-start_number", "0",
            "-i", str(Path(scratch_dir) / FRAME_PATTERN),
        ]
        if with_audio:
            cmd.extend(["-i", str(audio_path), "-map", "0:v:0", "-map", "1:a:0"])

        if fmt == "gif":
            cmd.extend(["-vf", GIF_FILTER, "-f", "gif"])
        elif fmt == "webm":
            cmd.extend(["-c:v", "libvpx-vp9", "-crf", str(crf), "-b:v", "1M"])
        else:
            cmd.extend([
                "-c:v", "libx264",
                "-crf", str(crf),
                "-preset", preset,
                "-pix_fmt", "yuv420p",
                "-movflags", "+faststart",
            ])

        if with_audio:
            # WebM containers cannot carry AAC
            audio_codec = "libopus" if fmt == "webm" else "aac"
            cmd.extend(["-c:a", audio_codec, "-b:a", self.audio_bitrate, "-shortest"])

        cmd.append(str(output_path))
        return cmd

    # =========================================================================
    # Encoding
    # =========================================================================

    async def encode(
        self,
        scratch_dir: Path,
        output_path: Path,
        export_settings: ExportSettings,
        on_progress: ProgressCallback | None = None,
        audio_path: str | None = None,
        duration: float | None = None,
    ) -> EncodeResult:
        """Encode the scratch directory's frames into ``output_path``.

        Falls back to the degraded-mode descriptor when the probe fails.
        ``duration`` is the composition length recorded in that descriptor;
        it defaults to the frame count over fps.

        Raises:
            EncodeSpawnError: If the encoder cannot be launched after a
                successful probe.
            EncodeProcessError: If the encoder exits with a non-zero status.
        """
        scratch_dir = Path(scratch_dir)
        output_path = Path(output_path)
        total_frames = count_frames(scratch_dir)

        if not await self.probe():
            path = await self.fallback.create(
                scratch_dir,
                output_path,
                export_settings,
                on_progress,
                duration=duration if duration is not None else total_frames / export_settings.fps,
            )
            return EncodeResult(path=path, degraded=True)

        output_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(scratch_dir, output_path, export_settings, audio_path)
        logger.info(
            f"[ENCODE] Starting {export_settings.format} encode of {total_frames} frames "
            f"(quality={export_settings.quality}, fps={export_settings.fps})"
        )
        logger.debug(f"[ENCODE] Command: {' '.join(cmd)}")

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise EncodeSpawnError(self.ffmpeg_path, str(e)) from e

        try:
            diagnostic_tail = await self._consume_stderr(proc.stderr, total_frames, on_progress)
            returncode = await proc.wait()
        except asyncio.CancelledError:
            logger.warning("[ENCODE] Encode cancelled, terminating encoder")
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()
            raise

        if returncode != 0:
            logger.error(f"[ENCODE] Encoder exited with {returncode}:\n{diagnostic_tail}")
            raise EncodeProcessError(returncode, diagnostic_tail)

        await report_progress(on_progress, 100.0)
        logger.info(f"[ENCODE] Encode complete: {output_path}")
        return EncodeResult(path=output_path, degraded=False)

    async def _consume_stderr(
        self,
        stream: asyncio.StreamReader,
        total_frames: int,
        on_progress: ProgressCallback | None,
    ) -> str:
        """Read encoder stderr to EOF, reporting frame progress.

        The encoder rewrites its status line with carriage returns, so both
        ``\\r`` and ``\\n`` terminate a line. Returns the last lines of output
        for diagnostics.
        """
        tail: deque[str] = deque(maxlen=self.diagnostic_tail_lines)
        buffer = b""
        last_percent = -1.0

        while True:
            chunk = await stream.read(4096)
            if not chunk:
                break
            buffer += chunk
            *lines, buffer = LINE_SPLIT_RE.split(buffer)
            for raw_line in lines:
                line = raw_line.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                tail.append(line)
                match = FRAME_PROGRESS_RE.search(line)
                if match is None or total_frames <= 0:
                    continue
                percent = min(int(match.group(1)) / total_frames, 1.0) * 100
                if percent > last_percent:
                    last_percent = percent
                    await report_progress(on_progress, percent)

        remainder = buffer.decode("utf-8", errors="replace").strip()
        if remainder:
            tail.append(remainder)
        return "\n".join(tail)
