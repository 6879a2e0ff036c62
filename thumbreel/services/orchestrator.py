"""Render job orchestration.

Owns the job state machine. ``submit`` runs on the request path: it holds one
render of the user's quota, creates the job and hands it to the worker pool.
The hold is given back unless the job completes. ``run`` executes on
a pool worker: rasterize every frame into a job-private scratch directory,
encode, persist the output, and report progress on the user's channel. The
scratch directory is removed whatever the outcome.
"""

import asyncio
import logging
import math
import secrets
import shutil
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from thumbreel.config import Settings
from thumbreel.exceptions import (
    JobNotFoundError,
    JobStateError,
    RenderCancelledError,
    RenderTimeoutError,
)
from thumbreel.render.encoder import EncodeResult, EncodingPipeline
from thumbreel.render.fallback import DegradedModeFallback
from thumbreel.render.rasterizer import FrameRasterizer
from thumbreel.schemas.composition import Composition, ExportSettings, parse_composition
from thumbreel.services.account_service import Account, AccountService
from thumbreel.services.event_broker import (
    EVENT_COMPLETE,
    EVENT_ERROR,
    EVENT_PROGRESS,
    EVENT_START,
    RenderEventBroker,
    create_complete_payload,
    create_error_payload,
    create_progress_payload,
    create_start_payload,
    user_channel,
)
from thumbreel.services.worker_pool import RenderWorkerPool

logger = logging.getLogger(__name__)

QUALITY_TIME_MULTIPLIER = {"low": 1.0, "medium": 1.5, "high": 2.0, "ultra": 3.0}
FORMAT_TIME_MULTIPLIER = {"mp4": 1.0, "gif": 0.8, "webm": 1.2}
OUTPUT_PREFIXES = {"video": "video", "ai-video": "ai_video"}
DOWNLOAD_URL_TEMPLATE = "/api/upload/download?imageUrl={url}"

# Share of overall progress given to frame rasterization; encoding gets the rest
FRAME_PHASE_PERCENT = 50


class JobState(Enum):
    """Render job state."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


ALLOWED_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.CREATED: frozenset({JobState.RUNNING, JobState.FAILED}),
    JobState.RUNNING: frozenset({JobState.COMPLETED, JobState.FAILED}),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset(),
}


@dataclass
class RenderJob:
    """One render of a composition for a user."""

    id: str
    user_id: str
    composition: Composition
    output_path: Path
    output_url: str
    scratch_dir: Path
    output_kind: str = "video"
    state: JobState = JobState.CREATED
    frames_total: int = 0
    frames_rendered: int = 0
    progress: int = 0
    stage: str | None = None
    error_message: str | None = None
    degraded: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_requested: bool = False
    quota_reserved: bool = False
    extra_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def video_id(self) -> str:
        return self.output_path.stem

    @property
    def download_url(self) -> str:
        return DOWNLOAD_URL_TEMPLATE.format(url=self.output_url)

    @property
    def is_finished(self) -> bool:
        return self.state in (JobState.COMPLETED, JobState.FAILED)

    def transition(self, new_state: JobState) -> None:
        """Move to ``new_state``.

        Raises:
            JobStateError: If the transition is not allowed.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.state]:
            raise JobStateError(
                f"Cannot move job {self.id} from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        now = datetime.now(timezone.utc)
        if new_state is JobState.RUNNING:
            self.started_at = now
        elif new_state in (JobState.COMPLETED, JobState.FAILED):
            self.completed_at = now

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "video_id": self.video_id,
            "user_id": self.user_id,
            "output_kind": self.output_kind,
            "state": self.state.value,
            "progress": self.progress,
            "stage": self.stage,
            "frames_total": self.frames_total,
            "frames_rendered": self.frames_rendered,
            "output_url": self.output_url if self.state is JobState.COMPLETED else None,
            "download_url": self.download_url if self.state is JobState.COMPLETED else None,
            "degraded": self.degraded,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


def estimate_render_seconds(duration: float, export_settings: ExportSettings) -> int:
    """Rough wall-clock estimate shown to the user before a render starts."""
    quality = QUALITY_TIME_MULTIPLIER.get(export_settings.quality, 1.0)
    fmt = FORMAT_TIME_MULTIPLIER.get(export_settings.format, 1.0)
    return math.ceil(duration * 2 * quality * fmt)


def build_output_filename(output_kind: str, fmt: str, prefix: str | None = None) -> str:
    prefix = prefix or OUTPUT_PREFIXES.get(output_kind, "video")
    return f"{prefix}_{int(time.time() * 1000)}_{secrets.randbelow(1000)}.{fmt}"


class RenderOrchestrator:
    """Creates render jobs and drives them through the render pipeline."""

    def __init__(
        self,
        settings: Settings,
        accounts: AccountService,
        broker: RenderEventBroker,
        encoder: EncodingPipeline | None = None,
        rasterizer_factory: Callable[[str | None], FrameRasterizer] | None = None,
    ):
        self.settings = settings
        self.accounts = accounts
        self.broker = broker
        self.encoder = encoder or EncodingPipeline(
            ffmpeg_path=settings.ffmpeg_path,
            fallback=DegradedModeFallback(tick_interval_s=settings.fallback_tick_interval_s),
            audio_bitrate=settings.audio_bitrate,
            diagnostic_tail_lines=settings.encoder_diagnostic_tail_lines,
            probe_timeout_s=settings.encoder_probe_timeout_s,
        )
        self._rasterizer_factory = rasterizer_factory or (
            lambda ffmpeg_path: FrameRasterizer(font_dir=settings.font_dir, ffmpeg_path=ffmpeg_path)
        )
        self.pool: RenderWorkerPool[RenderJob] = RenderWorkerPool(
            self.run,
            workers=settings.render_workers,
            queue_size=settings.render_queue_size,
        )
        self._jobs: dict[str, RenderJob] = {}

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        self.pool.start()

    async def shutdown(self, drain: bool = True, timeout: float | None = None) -> None:
        await self.pool.shutdown(drain=drain, timeout=timeout)

    # =========================================================================
    # Request side
    # =========================================================================

    async def submit(
        self,
        account: Account,
        composition: Composition | dict[str, Any],
        output_kind: str = "video",
        output_prefix: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> RenderJob:
        """Validate, reserve quota, create a job and enqueue it.

        Returns immediately; the job runs on the worker pool. One render of
        the allowance is held until the job ends and given back unless it
        completes. ``metadata`` is merged into the persisted media record.

        Raises:
            CompositionValidationError: If the composition is malformed.
            QuotaExceededError: If the account cannot start another render.
            RenderQueueFullError: If the worker pool queue is saturated.
        """
        composition = parse_composition(composition)
        self._prune_jobs()
        if not account.is_privileged:
            await asyncio.to_thread(self.accounts.reserve_render, account.id)

        job_id = str(uuid.uuid4())
        filename = build_output_filename(output_kind, composition.export_settings.format, output_prefix)
        output_url = f"{Path(self.settings.output_dir).as_posix()}/{filename}"
        job = RenderJob(
            id=job_id,
            user_id=account.id,
            composition=composition,
            output_kind=output_kind,
            output_path=Path(self.settings.output_dir).resolve() / filename,
            output_url=output_url,
            scratch_dir=Path(self.settings.scratch_root) / f"frames_{job_id}",
            frames_total=composition.total_frames,
            quota_reserved=not account.is_privileged,
            extra_metadata=dict(metadata or {}),
        )

        self._jobs[job.id] = job
        try:
            self.pool.submit(job)
        except Exception:
            del self._jobs[job.id]
            await self._release_quota(job)
            raise

        logger.info(
            f"[RENDER] Job {job.id} queued for {account.id}: "
            f"{job.frames_total} frames, {composition.export_settings.format}"
        )
        return job

    def estimate_render_seconds(self, composition: Composition) -> int:
        return estimate_render_seconds(composition.duration, composition.export_settings)

    def get_job(self, job_id: str) -> RenderJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self, user_id: str) -> list[RenderJob]:
        return [job for job in self._jobs.values() if job.user_id == user_id]

    async def cancel(self, job_id: str) -> RenderJob:
        """Request cancellation.

        A queued job fails immediately. A running job stops at the next
        frame batch boundary or before encoding.

        Raises:
            JobNotFoundError: If the job does not exist.
            JobStateError: If the job already finished.
        """
        job = self.get_job(job_id)
        if job.is_finished:
            raise JobStateError(f"Job {job_id} already {job.state.value}")
        job.cancel_requested = True
        logger.info(f"[RENDER] Cancellation requested for job {job_id}")
        if job.state is JobState.CREATED:
            await self._fail(job, RenderCancelledError())
        return job

    # =========================================================================
    # Worker side
    # =========================================================================

    async def run(self, job: RenderJob) -> None:
        """Execute a job to completion or failure. Never raises job errors."""
        if job.state is not JobState.CREATED:
            logger.info(f"[RENDER] Skipping job {job.id} in state {job.state.value}")
            return

        job.transition(JobState.RUNNING)
        composition = job.composition
        await self._publish(
            job,
            EVENT_START,
            create_start_payload(
                job.id,
                estimated_time=self.estimate_render_seconds(composition),
                aspect_ratio=composition.template.aspect_ratio or "16:9",
                resolution={
                    "width": composition.export_settings.resolution.width,
                    "height": composition.export_settings.resolution.height,
                },
            ),
        )

        started = time.monotonic()
        timeout = self.settings.render_job_timeout_s
        try:
            if timeout and timeout > 0:
                try:
                    await asyncio.wait_for(self._execute(job), timeout=timeout)
                except asyncio.TimeoutError as e:
                    raise RenderTimeoutError(timeout) from e
            else:
                await self._execute(job)
        except asyncio.CancelledError:
            await self._fail(job, RenderCancelledError("Render interrupted by shutdown"))
            raise
        except Exception as e:
            await self._fail(job, e)
        finally:
            self._cleanup_scratch(job)

        logger.info(
            f"[RENDER] Job {job.id} {job.state.value} in {time.monotonic() - started:.1f}s"
        )
        self._prune_jobs()

    async def _execute(self, job: RenderJob) -> None:
        composition = job.composition
        job.frames_total = composition.total_frames
        job.scratch_dir.mkdir(parents=True, exist_ok=True)

        encoder_available = await self.encoder.probe()
        rasterizer = self._rasterizer_factory(self.settings.ffmpeg_path if encoder_available else None)

        await self._render_frames(job, rasterizer)
        self._check_cancelled(job)

        await self._emit_progress(
            job,
            FRAME_PHASE_PERCENT,
            "Frames generated, encoding video...",
            frame=job.frames_total,
            total_frames=job.frames_total,
        )

        async def on_encode_progress(percent: float) -> None:
            overall = FRAME_PHASE_PERCENT + round(percent * (100 - FRAME_PHASE_PERCENT) / 100)
            await self._emit_progress(job, overall, "Encoding video...", encoding_progress=percent)

        result = await self.encoder.encode(
            job.scratch_dir,
            job.output_path,
            composition.export_settings,
            on_progress=on_encode_progress,
            audio_path=self._audio_path(composition),
            duration=composition.duration,
        )
        await self._complete(job, result)

    async def _render_frames(self, job: RenderJob, rasterizer: FrameRasterizer) -> None:
        """Rasterize every frame, batch by batch, on worker threads.

        The first failing frame aborts the job. Frames of that batch not yet
        started are skipped; frames already rendering finish first.
        """
        composition = job.composition
        total = job.frames_total
        interval = max(1, self.settings.progress_frame_interval)
        batch_size = max(1, self.settings.render_frame_batch_size)
        semaphore = asyncio.Semaphore(max(1, self.settings.render_frame_workers))
        aborted = False

        async def render_one(index: int) -> None:
            async with semaphore:
                if aborted:
                    return
                await asyncio.to_thread(
                    rasterizer.render_frame,
                    composition,
                    composition.frame_time(index),
                    index,
                    job.scratch_dir,
                )

        logger.info(f"[RENDER] Job {job.id}: rasterizing {total} frames")
        await self._emit_progress(job, 0, "Generating frames", frame=0, total_frames=total)

        for batch_start in range(0, total, batch_size):
            self._check_cancelled(job)
            batch_end = min(batch_start + batch_size, total)
            tasks = [asyncio.create_task(render_one(i)) for i in range(batch_start, batch_end)]
            try:
                for finished in asyncio.as_completed(tasks):
                    await finished
                    job.frames_rendered += 1
                    if job.frames_rendered % interval == 0:
                        await self._emit_frame_progress(job)
            except BaseException:
                # Frames already on a worker thread must finish before the scratch directory is removed
                aborted = True
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            await self._emit_frame_progress(job)

    async def _complete(self, job: RenderJob, result: EncodeResult) -> None:
        composition = job.composition
        job.degraded = result.degraded
        metadata = {
            "job_id": job.id,
            "format": composition.export_settings.format,
            "quality": composition.export_settings.quality,
            "fps": composition.fps,
            "duration": composition.duration,
            "frames": job.frames_total,
            "resolution": {
                "width": composition.export_settings.resolution.width,
                "height": composition.export_settings.resolution.height,
            },
            "degraded": result.degraded,
            **job.extra_metadata,
        }
        try:
            await asyncio.to_thread(
                self.accounts.record_output,
                job.user_id,
                job.output_url,
                job.output_kind,
                composition.template.name,
                metadata,
                consume=False,
            )
        except Exception:
            # An output with no media record is unreachable; drop it
            self._remove_output(job)
            raise
        job.quota_reserved = False

        await self._emit_progress(job, 100, "Complete")
        self._cleanup_scratch(job)
        job.transition(JobState.COMPLETED)
        await self._publish(
            job,
            EVENT_COMPLETE,
            create_complete_payload(job.id, job.output_url, job.download_url, degraded=job.degraded),
        )

    async def _fail(self, job: RenderJob, error: BaseException) -> None:
        message = getattr(error, "message", None) or str(error) or error.__class__.__name__
        if job.is_finished:
            logger.warning(f"[RENDER] Job {job.id} already {job.state.value}, ignoring: {message}")
            return
        job.error_message = message
        job.transition(JobState.FAILED)
        await self._release_quota(job)
        if isinstance(error, RenderCancelledError):
            logger.info(f"[RENDER] Job {job.id} cancelled")
        else:
            logger.error(f"[RENDER] Job {job.id} failed: {message}", exc_info=error)
        await self._publish(job, EVENT_ERROR, create_error_payload(job.id, message))

    # =========================================================================
    # Helpers
    # =========================================================================

    def _check_cancelled(self, job: RenderJob) -> None:
        if job.cancel_requested:
            raise RenderCancelledError()

    def _audio_path(self, composition: Composition) -> str | None:
        settings = composition.settings
        if not settings.audio_enabled or not settings.audio_source:
            return None
        if not Path(settings.audio_source).is_file():
            logger.warning(f"[RENDER] Audio source not found, rendering without audio: {settings.audio_source}")
            return None
        return settings.audio_source

    async def _emit_frame_progress(self, job: RenderJob) -> None:
        total = max(1, job.frames_total)
        await self._emit_progress(
            job,
            round(job.frames_rendered / total * FRAME_PHASE_PERCENT),
            "Generating frames",
            frame=job.frames_rendered,
            total_frames=job.frames_total,
        )

    async def _emit_progress(
        self,
        job: RenderJob,
        progress: int,
        stage: str,
        frame: int | None = None,
        total_frames: int | None = None,
        encoding_progress: float | None = None,
    ) -> None:
        """Publish progress, never letting the reported value go backwards."""
        progress = max(0, min(100, int(progress)))
        if progress < job.progress:
            return
        job.progress = progress
        job.stage = stage
        await self._publish(
            job,
            EVENT_PROGRESS,
            create_progress_payload(
                job.id,
                progress,
                stage,
                frame=frame,
                total_frames=total_frames,
                encoding_progress=encoding_progress,
            ),
        )

    async def _publish(self, job: RenderJob, event: str, payload: dict[str, Any]) -> None:
        await self.broker.publish(user_channel(job.user_id), event, payload)

    def _cleanup_scratch(self, job: RenderJob) -> None:
        if not job.scratch_dir.exists():
            return
        try:
            shutil.rmtree(job.scratch_dir)
            logger.debug(f"[RENDER] Removed scratch directory {job.scratch_dir}")
        except OSError as e:
            logger.warning(f"[RENDER] Failed to remove scratch directory {job.scratch_dir}: {e}")

    def _remove_output(self, job: RenderJob) -> None:
        try:
            job.output_path.unlink(missing_ok=True)
            logger.info(f"[RENDER] Removed unrecorded output {job.output_path}")
        except OSError as e:
            logger.warning(f"[RENDER] Failed to remove output {job.output_path}: {e}")

    async def _release_quota(self, job: RenderJob) -> None:
        """Give back the render held at submission, once."""
        if not job.quota_reserved:
            return
        job.quota_reserved = False
        try:
            await asyncio.to_thread(self.accounts.release_render, job.user_id)
        except Exception as e:
            logger.error(f"[QUOTA] Failed to release reserved render for job {job.id}: {e}", exc_info=e)

    def _prune_jobs(self) -> None:
        """Forget finished jobs past the retention window or over the cap."""
        finished = sorted(
            (job for job in self._jobs.values() if job.is_finished),
            key=lambda job: job.completed_at or job.created_at,
        )
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=self.settings.job_retention_s)
        overflow = len(finished) - max(0, self.settings.max_finished_jobs)
        for index, job in enumerate(finished):
            if index < overflow or (job.completed_at or job.created_at) <= cutoff:
                del self._jobs[job.id]
                logger.debug(f"[RENDER] Pruned finished job {job.id}")
