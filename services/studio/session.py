"""
Studio Session

Operator-facing state of the console: the current script, app state, log,
retry countdowns and playback. The CLI and the API server both drive the
pipeline through a session.

Flow:
    START ──(script compiled)──► EDITOR ──(master run)──► GENERATING_VIDEO ──► EDITOR
      ▲                            │
      └──(credentials selected)── KEY_SELECTION ◄──(entity not found error)
"""

import asyncio
import logging
import time
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from pydantic import ValidationError

from core.concurrency import SingleFlight
from core.config import get_config
from core.errors import GenerationBusy, describe_error, is_credential_error
from core.retry import RetryEventBus, RetryingCaller
from services.generation.backend import GenerationBackend
from services.generation.gemini import GeminiBackend, pcm_to_wav
from services.generation.models import ScriptDocument, ScriptSegment, TrendingTopic, to_data_url
from services.orchestrator.pipeline import PipelineOrchestrator
from services.orchestrator.state import MasterRunReport, RenderSettings
from services.streaming.progress_tracker import ProgressTracker

logger = logging.getLogger(__name__)


class AppState(str, Enum):
    START = "start"
    KEY_SELECTION = "key_selection"
    EDITOR = "editor"
    GENERATING_VIDEO = "generating_video"


class StudioSession:
    """
    One operator's console.

    Usage:
        session = StudioSession()
        await session.generate_script("Phishing scams targeting bank customers")
        report = await session.run_master()
        await session.close()
    """

    def __init__(
        self,
        backend: Optional[GenerationBackend] = None,
        config: Optional[Any] = None,
        bus: Optional[RetryEventBus] = None,
        tracker: Optional[ProgressTracker] = None,
        player: Optional[Callable[[str, bytes], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config or get_config()
        self.bus = bus if bus is not None else RetryEventBus()
        self.backend = backend or GeminiBackend(
            self.config,
            caller=RetryingCaller(self.bus, self.config.retry),
        )
        self.tracker = tracker or ProgressTracker(mission_id=uuid4().hex[:12])
        self.render = RenderSettings(
            resolution=self.config.render.resolution,
            aspect_ratio=self.config.render.aspect_ratio,
            fps=self.config.render.fps,
        )
        self.orchestrator = PipelineOrchestrator(
            self.backend,
            tracker=self.tracker,
            config=self.config,
            render=self.render,
            on_playback=self._on_playback,
            error_formatter=self.format_error,
            sleep=sleep,
        )

        self.app_state = AppState.START if self.config.api.google_api_key else AppState.KEY_SELECTION
        self.topic = ""
        self.script_model = self.config.models.script_model
        self.script: Optional[ScriptDocument] = None
        self.trending_topics: list[TrendingTopic] = []
        self.currently_playing_id: Optional[str] = None
        self.player = player

        self._automating = SingleFlight("script")
        self._scanning = SingleFlight("topic-scan")
        self._clock = clock
        self._retry_deadlines: dict[str, float] = {}
        self._unsubscribe_retries = self.bus.subscribe(self._on_retry)

    # ------------------------------------------------------------------
    # Errors and retries
    # ------------------------------------------------------------------

    def format_error(self, error: BaseException) -> str:
        """Readable message for the log. Invalid credentials force key selection."""
        message = describe_error(error)
        if is_credential_error(message):
            self.app_state = AppState.KEY_SELECTION
            self.tracker.credentials_required("API key rejected. Select a valid key to continue.")
        return message

    def _on_retry(self, call_id: str, wait_ms: int):
        self.tracker.retry(call_id, wait_ms)
        self._retry_deadlines[call_id] = self._clock() + wait_ms / 1000

    def retry_countdowns(self) -> dict[str, float]:
        """Seconds left on every active back-off, keyed by call id."""
        now = self._clock()
        expired = [call_id for call_id, deadline in self._retry_deadlines.items() if deadline <= now]
        for call_id in expired:
            del self._retry_deadlines[call_id]
        return {call_id: round(deadline - now, 1) for call_id, deadline in self._retry_deadlines.items()}

    def select_credentials(self, api_key: str):
        """Install a new API key and return to the start screen."""
        set_api_key = getattr(self.backend, "set_api_key", None)
        if set_api_key is not None:
            set_api_key(api_key)
        else:
            self.config.api.google_api_key = api_key
        logger.info("API key replaced")
        self.app_state = AppState.START
        self.tracker.info("Credentials updated: system ready")

    # ------------------------------------------------------------------
    # Scripts and topics
    # ------------------------------------------------------------------

    @property
    def automating(self) -> bool:
        return self._automating.is_running

    async def generate_script(self, topic: str, model: Optional[str] = None) -> Optional[ScriptDocument]:
        """Draft a script. Returns None if busy, topic empty or generation failed."""
        topic = topic.strip()
        if not topic or not self._automating.try_acquire(topic):
            return None

        model = model or self.script_model
        self.topic = topic
        self.tracker.info(f"Initializing script: {topic.upper()} [{model}]")
        try:
            text = await self.backend.generate_script(topic, model)
            script = ScriptDocument.model_validate_json(text)
        except ValidationError as e:
            self.tracker.error(f"Critical failure: script did not match the expected shape ({e.error_count()} errors)")
            return None
        except Exception as e:
            self.tracker.error(f"Critical failure: {self.format_error(e)}", error=type(e).__name__)
            return None
        finally:
            self._automating.release(topic)

        self.script = script
        self.app_state = AppState.EDITOR
        self.tracker.info(f"Script compiled: {len(script.segments)} segments ready for deployment")
        return script

    async def scan_topics(self) -> list[TrendingTopic]:
        """Refresh trending topic suggestions."""
        if not self._scanning.try_acquire("scan"):
            return self.trending_topics

        self.tracker.info("Topic scan: searching for trending topics...")
        try:
            topics = await self.backend.scan_topics()
        except Exception as e:
            self.tracker.error(f"Topic scan failed: {self.format_error(e)}")
            return self.trending_topics
        finally:
            self._scanning.release("scan")

        self.trending_topics = topics
        self.tracker.info(f"Topic scan: {len(topics)} topics identified")
        return topics

    async def deploy_topic(self, topic: TrendingTopic) -> Optional[ScriptDocument]:
        """Draft a script from a scanned topic."""
        script = await self.generate_script(f"{topic.title} - Context: {topic.description}")
        if script is not None:
            self.topic = topic.title
        return script

    # ------------------------------------------------------------------
    # Segment editing
    # ------------------------------------------------------------------

    def segment(self, segment_id: str) -> ScriptSegment:
        """Look up a segment. Raises LookupError without a script or match."""
        if self.script is None:
            raise LookupError("No script loaded")
        segment = self.script.find(segment_id)
        if segment is None:
            raise LookupError(f"Unknown segment: {segment_id}")
        return segment

    def update_segment(self, segment_id: str, **updates: Any) -> ScriptSegment:
        """Edit segment fields in place. Raises ValueError for ids, unknown fields or invalid values."""
        segment = self.segment(segment_id)
        for name in updates:
            if name == "id" or name not in ScriptSegment.model_fields:
                raise ValueError(f"Segment field is not editable: {name}")
        # Validate the whole edit before touching the segment
        edited = ScriptSegment.model_validate({**segment.model_dump(), **updates})
        for name in updates:
            setattr(segment, name, getattr(edited, name))
        return segment

    def upload_thumbnail(self, segment_id: str, data: bytes, mime_type: str = "image/png") -> str:
        """Use an operator-supplied image as the segment's keyframe."""
        data_url = to_data_url(data, mime_type)
        self.update_segment(segment_id, thumbnail_url=data_url)
        self.tracker.info(f"Image upload: source asset loaded for {segment_id}")
        return data_url

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate_keyframe(self, segment_id: str) -> Optional[str]:
        try:
            return await self.orchestrator.generate_keyframe(self.segment(segment_id))
        except (GenerationBusy, LookupError):
            raise
        except Exception:
            return None  # Already logged by the orchestrator

    async def generate_video(self, segment_id: str) -> Optional[str]:
        try:
            return await self.orchestrator.generate_video(self.segment(segment_id))
        except (GenerationBusy, LookupError):
            raise
        except Exception:
            return None

    async def toggle_voice(self, segment_id: str) -> Optional[bytes]:
        """Stop playback of this segment, or synthesize and play its narration."""
        if self.currently_playing_id == segment_id:
            self.stop_audio()
            return None
        try:
            return await self.orchestrator.generate_voice(self.segment(segment_id))
        except (GenerationBusy, LookupError):
            raise
        except Exception:
            return None

    async def run_pipeline(self, segment_id: str) -> bool:
        return await self.orchestrator.run_pipeline(self.segment(segment_id))

    async def run_master(self) -> Optional[MasterRunReport]:
        if self.script is None or self.orchestrator.master_active:
            return None

        self.app_state = AppState.GENERATING_VIDEO
        try:
            return await self.orchestrator.run_master(self.script.segments)
        finally:
            if self.app_state == AppState.GENERATING_VIDEO:
                self.app_state = AppState.EDITOR

    def request_abort(self) -> bool:
        return self.orchestrator.request_abort()

    # ------------------------------------------------------------------
    # Audio
    # ------------------------------------------------------------------

    def _on_playback(self, segment_id: str, audio: bytes):
        self.stop_audio()
        self.currently_playing_id = segment_id
        if self.player:
            self.player(segment_id, audio)

    def stop_audio(self):
        self.currently_playing_id = None

    def export_voice(self, segment_id: str, output_dir: Optional[str] = None) -> Optional[Path]:
        """Write a segment's cached narration as WAV. None if not synthesized."""
        audio = self.orchestrator.audio_cache.get(segment_id)
        if audio is None:
            return None
        base_dir = Path(output_dir or self.config.pipeline.output_dir)
        base_dir.mkdir(parents=True, exist_ok=True)
        path = base_dir / f"voice_{segment_id}.wav"
        path.write_bytes(pcm_to_wav(audio))
        return path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """JSON-ready view of the whole session."""
        return {
            "mission_id": self.tracker.mission_id,
            "app_state": self.app_state.value,
            "topic": self.topic,
            "automating": self.automating,
            "script": self.script.model_dump(by_alias=True) if self.script else None,
            "render": {
                "resolution": self.render.resolution,
                "aspect_ratio": self.render.aspect_ratio,
                "fps": self.render.fps,
                "video_model": self.render.video_model,
            },
            "pipeline": self.orchestrator.status(),
            "retrying": self.retry_countdowns(),
            "currently_playing_id": self.currently_playing_id,
            "synthesized": sorted(self.orchestrator.audio_cache),
            "trending_topics": [topic.model_dump() for topic in self.trending_topics],
        }

    async def close(self):
        self._unsubscribe_retries()
        close = getattr(self.backend, "close", None)
        if close is not None:
            await close()
