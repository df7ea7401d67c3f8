"""
Segment Pipeline Orchestrator

Chains the three generations a segment needs and walks a whole script.

Pipeline (one segment, strictly sequential):
    VOICE ──► KEYFRAME ──► VIDEO
      │          │           └─ conditioned on the keyframe just produced
      │          └─ stored as the segment thumbnail
      └─ cached for playback (played immediately unless a master run drives it)

Master run (every segment, in list order):
    for segment:
        cancelled?        -> stop before starting it
        already rendered? -> skip
        run pipeline      -> cool down 2s on success, 5s on failure

Guards reject conflicting requests instead of queuing them: one pipeline,
one master run, and one generation per kind at a time. A failed stage aborts
the rest of its segment but keeps earlier artifacts.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional

from core.concurrency import CancellationToken, SingleFlight
from core.config import get_config
from core.errors import GenerationBusy, describe_error
from services.generation.backend import GenerationBackend
from services.generation.models import (
    ConditioningImage,
    PipelineStage,
    ScriptSegment,
    to_data_url,
)
from services.streaming.progress_tracker import ProgressTracker

from .state import STAGE_ORDER, MasterRunReport, PipelineRun, RenderSettings

logger = logging.getLogger(__name__)

MASTER_KEY = "master"


class PipelineOrchestrator:
    """
    Runs per-segment pipelines and the master walk.

    Usage:
        orchestrator = PipelineOrchestrator(backend, tracker=tracker)

        ok = await orchestrator.run_pipeline(segment)
        report = await orchestrator.run_master(script.segments)

        # From another task, stop after the current segment
        orchestrator.request_abort()
    """

    def __init__(
        self,
        backend: GenerationBackend,
        tracker: Optional[ProgressTracker] = None,
        config: Optional[Any] = None,
        render: Optional[RenderSettings] = None,
        on_playback: Optional[Callable[[str, bytes], None]] = None,
        error_formatter: Callable[[BaseException], str] = describe_error,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the orchestrator.

        Args:
            backend: Generation Backend (already retry-wrapped)
            tracker: Console log
            config: Optional config override (cool-downs)
            render: Render settings, shared with the session
            on_playback: Called with (segment_id, audio) for immediate playback
            error_formatter: Turns a failure into a log message
            sleep: Sleep used for cool-downs
        """
        self.backend = backend
        self.tracker = tracker or ProgressTracker()
        self.config = config or get_config()
        self.render = render or RenderSettings()
        self.on_playback = on_playback
        self.error_formatter = error_formatter
        self._sleep = sleep

        self._pipeline_guard = SingleFlight("pipeline")
        self._master_guard = SingleFlight("master")
        self._stage_guards = {stage: SingleFlight(stage.value) for stage in PipelineStage}

        self._run: Optional[PipelineRun] = None
        self._master_token: Optional[CancellationToken] = None

        self.highlighted_segment_id: Optional[str] = None
        self.preview_url: Optional[str] = None
        self.audio_cache: dict[str, bytes] = {}

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def pipeline_active(self) -> bool:
        return self._pipeline_guard.is_running

    @property
    def active_pipeline_id(self) -> Optional[str]:
        return self._pipeline_guard.running_id

    @property
    def master_active(self) -> bool:
        return self._master_guard.is_running

    @property
    def stage(self) -> Optional[PipelineStage]:
        return self._run.stage if self._run else None

    def stage_of(self, segment_id: str) -> Optional[PipelineStage]:
        """Current stage for a segment, or None if it has no active pipeline."""
        if self._run and self._run.segment_id == segment_id:
            return self._run.stage
        return None

    @property
    def generating(self) -> dict[str, str]:
        """Generation kind -> segment id, for every in-flight generation."""
        return {
            stage.value: guard.running_id
            for stage, guard in self._stage_guards.items()
            if guard.is_running
        }

    def status(self) -> dict[str, Any]:
        return {
            "pipeline_active": self.pipeline_active,
            "active_pipeline_id": self.active_pipeline_id,
            "stage": self.stage.value if self.stage else None,
            "master_active": self.master_active,
            "highlighted_segment_id": self.highlighted_segment_id,
            "generating": self.generating,
        }

    # ------------------------------------------------------------------
    # Single generations
    # ------------------------------------------------------------------

    def _claim(self, stage: PipelineStage, segment_id: str) -> SingleFlight:
        guard = self._stage_guards[stage]
        if not guard.try_acquire(segment_id):
            raise GenerationBusy(stage.value, guard.running_id)
        return guard

    def _report_failure(self, segment_id: str, stage: PipelineStage, error: BaseException):
        message = self.error_formatter(error)
        logger.error(f"{stage.value} failed for segment {segment_id}: {message}")
        self.tracker.stage_failed(segment_id, stage.value, message)

    def _play(self, segment_id: str, audio: bytes):
        if not self.on_playback:
            return
        try:
            self.on_playback(segment_id, audio)
        except Exception as e:
            logger.warning(f"Playback failed for segment {segment_id}: {e}")

    async def generate_voice(self, segment: ScriptSegment, autoplay: bool = True) -> bytes:
        """Synthesize narration and cache it for playback."""
        guard = self._claim(PipelineStage.VOICE, segment.id)
        try:
            audio = await self.backend.generate_speech(segment.narration, segment.id)
        except Exception as e:
            self._report_failure(segment.id, PipelineStage.VOICE, e)
            raise
        finally:
            guard.release(segment.id)

        self.audio_cache[segment.id] = audio
        self.tracker.asset_generated(segment.id, "voice")
        if autoplay:
            self._play(segment.id, audio)
        return audio

    async def generate_keyframe(self, segment: ScriptSegment) -> str:
        """Generate a reference image and store it as the segment thumbnail."""
        guard = self._claim(PipelineStage.KEYFRAME, segment.id)
        self.tracker.info(f"Generating reference keyframe for {segment.id}")
        try:
            image = await self.backend.generate_thumbnail(segment.visual_prompt, segment.id)
        except Exception as e:
            self._report_failure(segment.id, PipelineStage.KEYFRAME, e)
            raise
        finally:
            guard.release(segment.id)

        data_url = to_data_url(image, "image/png")
        segment.thumbnail_url = data_url
        self.preview_url = data_url
        self.tracker.asset_generated(segment.id, "keyframe")
        return data_url

    async def generate_video(
        self,
        segment: ScriptSegment,
        conditioning: Optional[str] = None,
    ) -> str:
        """
        Render the segment's video clip.

        Args:
            segment: Segment to render
            conditioning: Data URL to use as first frame; falls back to the
                segment's current thumbnail

        Returns:
            Locator of the rendered video
        """
        guard = self._claim(PipelineStage.VIDEO, segment.id)
        model = self.render.video_model or self.config.models.default_video_model
        self.tracker.info(f"Rendering {model} for segment {segment.id}")
        try:
            thumbnail = conditioning or segment.thumbnail_url
            image = ConditioningImage.from_data_url(thumbnail) if thumbnail else None
            url = await self.backend.generate_video(
                segment.visual_prompt,
                segment.id,
                resolution=self.render.resolution,
                aspect_ratio=self.render.aspect_ratio,
                fps=self.render.fps,
                image=image,
                model=model,
            )
        except Exception as e:
            self._report_failure(segment.id, PipelineStage.VIDEO, e)
            raise
        finally:
            guard.release(segment.id)

        segment.video_url = url
        self.preview_url = url
        self.tracker.asset_generated(segment.id, "video", url)
        return url

    # ------------------------------------------------------------------
    # Pipelines
    # ------------------------------------------------------------------

    def _enter(self, stage: PipelineStage):
        self._run.stage = stage
        self.tracker.stage_started(self._run.segment_id, stage.value, self._run.step, len(STAGE_ORDER))

    def _leave(self):
        self.tracker.stage_completed(self._run.segment_id, self._run.stage.value)

    async def run_pipeline(self, segment: ScriptSegment, autoplay: bool = True) -> bool:
        """
        Run VOICE -> KEYFRAME -> VIDEO for one segment.

        Returns:
            True if all three stages succeeded. False if any stage failed or
            another pipeline was already running (nothing is started then).
        """
        if not self._pipeline_guard.try_acquire(segment.id):
            return False

        self._run = PipelineRun(segment_id=segment.id, autoplay=autoplay)
        try:
            self._enter(PipelineStage.VOICE)
            await self.generate_voice(segment, autoplay=autoplay)
            self._leave()

            self._enter(PipelineStage.KEYFRAME)
            thumbnail = await self.generate_keyframe(segment)
            self._leave()

            self._enter(PipelineStage.VIDEO)
            await self.generate_video(segment, conditioning=thumbnail)
            self._leave()
        except Exception as e:
            logger.warning(f"Pipeline for segment {segment.id} aborted: {type(e).__name__}: {e}")
            self.tracker.pipeline_failed(segment.id)
            return False
        finally:
            self._run = None
            self._pipeline_guard.release(segment.id)

        self.tracker.pipeline_succeeded(segment.id)
        return True

    async def run_master(
        self,
        segments: Iterable[ScriptSegment],
        token: Optional[CancellationToken] = None,
    ) -> Optional[MasterRunReport]:
        """
        Run the pipeline over every segment, in order.

        Args:
            segments: Script segments (their order is the walk order)
            token: Cancellation token; a fresh one is created if omitted

        Returns:
            Report of the walk, or None if a master run was already active
        """
        if not self._master_guard.try_acquire(MASTER_KEY):
            return None

        segments = list(segments)
        token = token or CancellationToken()
        self._master_token = token
        report = MasterRunReport()
        pipeline_config = self.config.pipeline

        self.tracker.started("Master run: initiating serial sequence for all segments", len(segments))
        try:
            for segment in segments:
                if token.cancelled:
                    report.cancelled = True
                    self.tracker.cancelled("Master run: sequence aborted by operator")
                    break

                if segment.produced:
                    report.skipped.append(segment.id)
                    self.tracker.segment_skipped(segment.id)
                    continue

                self.highlighted_segment_id = segment.id

                if await self.run_pipeline(segment, autoplay=False):
                    report.succeeded.append(segment.id)
                    await self._sleep(pipeline_config.success_cooldown_seconds)
                else:
                    report.failed.append(segment.id)
                    self.tracker.warning(
                        f"Segment {segment.id} failed. Pausing for "
                        f"{pipeline_config.failure_cooldown_seconds:g}s before next..."
                    )
                    await self._sleep(pipeline_config.failure_cooldown_seconds)
        finally:
            self._master_token = None
            self._master_guard.release(MASTER_KEY)

        self.tracker.completed("Master run: operation finished", data=report.to_dict())
        return report

    def request_abort(self) -> bool:
        """Stop the master run before its next segment. False if none is active."""
        if not self.master_active or self._master_token is None:
            return False
        self._master_token.cancel()
        self.tracker.info("Master run: abort signal received. Stopping after current task...")
        return True
