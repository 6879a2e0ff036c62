"""
Pytest fixtures for thumbreel tests.

Every test gets its own SQLite database, scratch root and output directory
under tmp_path, so renders never touch the working tree.

CI/CD Note:
Tests that drive a real FFmpeg binary are marked with @pytest.mark.requires_ffmpeg
Run `pytest -m "not requires_ffmpeg"` to skip them on hosts without FFmpeg.
"""

import asyncio
from pathlib import Path
from typing import Any, Callable

import pytest

from thumbreel.config import Settings
from thumbreel.models.database import create_db_engine, create_session_maker, init_db
from thumbreel.render.encoder import EncodeResult
from thumbreel.render.fallback import report_progress
from thumbreel.services.account_service import AccountService


def pytest_configure(config):
    """Register custom markers for CI/CD test filtering."""
    config.addinivalue_line(
        "markers",
        "requires_ffmpeg: mark test as requiring an ffmpeg binary on PATH"
    )


class FakeEncoder:
    """Stands in for EncodingPipeline without spawning a process.

    Writes a small placeholder file at the output path and reports a fixed
    progress sequence.
    """

    def __init__(
        self,
        available: bool = True,
        fail_with: Exception | None = None,
        delay: float = 0.0,
    ):
        self.available = available
        self.fail_with = fail_with
        self.delay = delay
        self.calls: list[dict[str, Any]] = []

    async def probe(self) -> bool:
        return self.available

    async def capabilities(self) -> dict[str, Any]:
        return {
            "ffmpeg": self.available,
            "video_creation": True,
            "full_video_features": self.available,
            "message": "fake encoder",
            "installation_guide": None,
        }

    async def encode(self, scratch_dir, output_path, export_settings, on_progress=None, audio_path=None, duration=None):
        frames = sorted(Path(scratch_dir).glob("frame_*.png"))
        self.calls.append({
            "scratch_dir": Path(scratch_dir),
            "output_path": Path(output_path),
            "format": export_settings.format,
            "frames": [f.name for f in frames],
            "audio_path": audio_path,
            "duration": duration,
        })
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        for percent in (25.0, 50.0, 100.0):
            await report_progress(on_progress, percent)
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"fake-video")
        return EncodeResult(path=output_path, degraded=False)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated under tmp_path with fast fallback ticks."""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'thumbreel.db'}",
        scratch_root=str(tmp_path / "scratch"),
        output_dir=str(tmp_path / "uploads"),
        font_dir=str(tmp_path / "fonts"),
        fallback_tick_interval_s=0.0,
        render_workers=1,
        render_queue_size=4,
        render_frame_workers=4,
        render_frame_batch_size=10,
        progress_frame_interval=5,
        render_job_timeout_s=30.0,
        default_quota=10,
        dev_mode=True,
    )


@pytest.fixture
def session_maker(settings: Settings):
    """Session factory bound to a fresh database."""
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield create_session_maker(engine)
    engine.dispose()


@pytest.fixture
def accounts(session_maker, settings: Settings) -> AccountService:
    return AccountService(
        session_maker,
        default_quota=settings.default_quota,
        quota_reset_days=settings.quota_reset_days,
    )


@pytest.fixture
def fake_encoder() -> FakeEncoder:
    return FakeEncoder()


@pytest.fixture
def fake_encoder_factory() -> Callable[..., FakeEncoder]:
    return FakeEncoder


@pytest.fixture
def make_payload() -> Callable[..., dict[str, Any]]:
    """Factory for camelCase composition payloads.

    Defaults to a tiny 64x36 canvas, 1 second at 24 fps, with one red
    rectangle covering the frame.
    """

    def _make(
        duration: float = 1.0,
        fps: int = 24,
        width: int = 64,
        height: int = 36,
        fmt: str = "mp4",
        quality: str = "medium",
        layers: list[dict[str, Any]] | None = None,
        background: str = "#000000",
    ) -> dict[str, Any]:
        if layers is None:
            layers = [
                {
                    "id": "bg-rect",
                    "type": "shape",
                    "startTime": 0,
                    "duration": duration,
                    "position": {"x": width / 2, "y": height / 2},
                    "size": {"width": width, "height": height},
                    "properties": {"shape": "rectangle", "color": "#ff0000"},
                }
            ]
        return {
            "template": {"id": "test", "name": "Test Template", "aspectRatio": "16:9"},
            "layers": layers,
            "settings": {"duration": duration, "backgroundColor": background},
            "exportSettings": {
                "format": fmt,
                "quality": quality,
                "fps": fps,
                "resolution": {"width": width, "height": height},
            },
        }

    return _make


@pytest.fixture
def shape_layer() -> Callable[..., dict[str, Any]]:
    """Factory for a shape layer payload."""

    def _make(
        layer_id: str,
        color: str = "#ff0000",
        x: float = 50,
        y: float = 50,
        width: float = 40,
        height: float = 40,
        z_index: int = 0,
        start_time: float = 0,
        duration: float = 1.0,
        **extra: Any,
    ) -> dict[str, Any]:
        layer = {
            "id": layer_id,
            "type": "shape",
            "startTime": start_time,
            "duration": duration,
            "position": {"x": x, "y": y},
            "size": {"width": width, "height": height},
            "zIndex": z_index,
            "properties": {"shape": "rectangle", "color": color},
        }
        layer.update(extra)
        return layer

    return _make
