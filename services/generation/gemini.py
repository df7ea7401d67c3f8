"""
Gemini Generation Backend

Single interface for every generation the console needs:
- Script drafting and trend scanning (Gemini text models)
- Keyframes (Gemini image model)
- Narration (Gemini TTS)
- Video clips (Veo, long-running operation + download)

Features:
- Every call goes through the quota-aware RetryingCaller
- SDK errors are normalized into GenerationError before retry classification
- Rendered videos are downloaded to local storage
"""

import asyncio
import io
import json
import logging
import uuid
import wave
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from google import genai
from google.genai import types

from core.config import get_config
from core.errors import GenerationError, normalize_error
from core.retry import RetryingCaller

from .models import ConditioningImage, TrendingTopic

logger = logging.getLogger(__name__)

T = TypeVar("T")

SPEECH_SAMPLE_RATE = 24000

SCRIPT_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "topic": types.Schema(type=types.Type.STRING),
        "segments": types.Schema(
            type=types.Type.ARRAY,
            items=types.Schema(
                type=types.Type.OBJECT,
                properties={
                    "id": types.Schema(type=types.Type.STRING),
                    "title": types.Schema(type=types.Type.STRING),
                    "timeRange": types.Schema(type=types.Type.STRING),
                    "visualPrompt": types.Schema(type=types.Type.STRING),
                    "audioSfx": types.Schema(type=types.Type.STRING),
                    "voicemail": types.Schema(type=types.Type.STRING),
                },
                required=["id", "title", "timeRange", "visualPrompt", "audioSfx", "voicemail"],
            ),
        ),
    },
    required=["topic", "segments"],
)


def strip_code_fence(text: str) -> str:
    """Remove a Markdown code fence the model sometimes wraps JSON in."""
    text = text.strip()
    if text.startswith("```json"):
        text = text.replace("```json", "").replace("```", "")
    elif text.startswith("```"):
        text = text.replace("```", "")
    return text.strip()


def pcm_to_wav(pcm: bytes, sample_rate: int = SPEECH_SAMPLE_RATE) -> bytes:
    """Wrap raw 16-bit mono PCM from the TTS model in a WAV container."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


def _first_inline_data(response: Any) -> Optional[bytes]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return None
    for part in candidates[0].content.parts or []:
        if part.inline_data is not None and part.inline_data.data:
            return part.inline_data.data
    return None


class GeminiBackend:
    """
    Generation Backend on the Gemini API.

    Usage:
        backend = GeminiBackend()

        script_json = await backend.generate_script("Phishing in 2025")
        png = await backend.generate_thumbnail(prompt, segment_id="1")
        path = await backend.generate_video(prompt, segment_id="1")
    """

    def __init__(
        self,
        config: Optional[Any] = None,
        caller: Optional[RetryingCaller] = None,
        client: Optional[genai.Client] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the backend.

        Args:
            config: Optional config override
            caller: Retry wrapper (one is built from config.retry if omitted)
            client: Pre-built genai client (tests inject a mock)
            http_client: HTTP client for video downloads
            sleep: Sleep used between video polls
        """
        self.config = config or get_config()
        self.caller = caller or RetryingCaller(policy=self.config.retry)
        self._client = client
        self._http_client = http_client
        self._sleep = sleep

    def _get_client(self) -> genai.Client:
        """Get or create the Gemini client."""
        if self._client is None:
            if not self.config.api.google_api_key:
                raise GenerationError("GOOGLE_API_KEY environment variable not set")
            self._client = genai.Client(api_key=self.config.api.google_api_key)
        return self._client

    async def _get_http(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=600.0)  # Videos can be large
        return self._http_client

    def set_api_key(self, api_key: str):
        """Swap credentials; the next call builds a fresh client."""
        self.config.api.google_api_key = api_key
        self._client = None

    async def close(self):
        """Close the HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _call(self, call_id: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run an operation through the retry wrapper with normalized errors."""

        async def normalized() -> T:
            try:
                return await operation()
            except GenerationError:
                raise
            except Exception as e:
                raise normalize_error(e) from e

        return await self.caller.execute(normalized, call_id)

    async def generate_script(self, topic: str, model: Optional[str] = None) -> str:
        """Draft a segmented script as JSON text."""
        model = model or self.config.models.script_model

        async def request() -> str:
            response = await self._get_client().aio.models.generate_content(
                model=model,
                contents=(
                    f'Write a short-form educational video script on the topic: "{topic}". '
                    "Split it into chapters. For each chapter give a title, a time range, "
                    "a cinematic visual prompt, sound effects and the narration text."
                ),
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SCRIPT_SCHEMA,
                ),
            )
            return response.text or ""

        logger.info(f"Script request: model={model}, topic={topic[:50]}")
        return await self._call("script-gen", request)

    async def scan_topics(self) -> list[TrendingTopic]:
        """Ask a search-grounded model for trending topics."""

        async def request() -> list[TrendingTopic]:
            response = await self._get_client().aio.models.generate_content(
                model=self.config.models.topic_model,
                contents=(
                    "Identify 4 currently trending digital security or privacy topics. "
                    "Return a JSON array of objects with title, description and relevance."
                ),
                config=types.GenerateContentConfig(
                    tools=[types.Tool(google_search=types.GoogleSearch())],
                ),
            )
            try:
                items = json.loads(strip_code_fence(response.text or "[]"))
            except json.JSONDecodeError as e:
                raise GenerationError(f"Topic scan returned invalid JSON: {e}")
            return [TrendingTopic.model_validate(item) for item in items]

        return await self._call("topic-scan", request)

    async def generate_thumbnail(self, prompt: str, segment_id: str) -> bytes:
        """Generate a 16:9 reference keyframe."""

        async def request() -> bytes:
            response = await self._get_client().aio.models.generate_content(
                model=self.config.models.image_model,
                contents=f"Cinematic keyframe. Subject: {prompt}.",
                config=types.GenerateContentConfig(
                    image_config=types.ImageConfig(aspect_ratio="16:9"),
                ),
            )
            data = _first_inline_data(response)
            if not data:
                raise GenerationError("Thumbnail generation failed.")
            return data

        return await self._call(f"keyframe-{segment_id}", request)

    async def generate_speech(self, text: str, segment_id: str) -> bytes:
        """Synthesize narration as raw PCM."""

        async def request() -> bytes:
            response = await self._get_client().aio.models.generate_content(
                model=self.config.models.speech_model,
                contents=f"Read slowly, in a calm and authoritative voice: {text}",
                config=types.GenerateContentConfig(
                    response_modalities=["AUDIO"],
                    speech_config=types.SpeechConfig(
                        voice_config=types.VoiceConfig(
                            prebuilt_voice_config=types.PrebuiltVoiceConfig(
                                voice_name=self.config.models.speech_voice,
                            )
                        )
                    ),
                ),
            )
            data = _first_inline_data(response)
            if not data:
                raise GenerationError("Audio generation failed.")
            return data

        return await self._call(f"voice-{segment_id}", request)

    async def generate_video(
        self,
        prompt: str,
        segment_id: str,
        resolution: str = "720p",
        aspect_ratio: str = "16:9",
        fps: str = "24",
        image: Optional[ConditioningImage] = None,
        model: Optional[str] = None,
    ) -> str:
        """
        Render a clip and download it.

        Args:
            prompt: Visual prompt for the clip
            segment_id: Segment this belongs to
            resolution: "720p" or "1080p"
            aspect_ratio: "16:9" or "9:16"
            fps: Requested frame rate (informational, Veo picks its own)
            image: Optional first-frame conditioning image
            model: Veo model id

        Returns:
            Local path of the downloaded video
        """
        model = model or self.config.models.default_video_model
        client = self._get_client()

        kwargs: dict[str, Any] = {
            "model": model,
            "prompt": prompt.strip(),
            "config": types.GenerateVideosConfig(
                number_of_videos=1,
                resolution=resolution,
                aspect_ratio=aspect_ratio,
            ),
        }
        if image is not None:
            kwargs["image"] = types.Image(image_bytes=image.image_bytes, mime_type=image.mime_type)

        logger.info(
            f"Veo request: model={model}, segment={segment_id}, {resolution} {aspect_ratio} @{fps}fps, "
            f"conditioned={image is not None}"
        )

        async def submit():
            return await client.aio.models.generate_videos(**kwargs)

        operation = await self._call(f"video-{segment_id}", submit)
        operation = await self._poll_video_operation(client, operation)

        if getattr(operation, "error", None):
            raise GenerationError(f"Video generation failed: {operation.error}")

        videos = getattr(operation.response, "generated_videos", None) or []
        uri = videos[0].video.uri if videos and videos[0].video else None
        if not uri:
            raise GenerationError("Video generation failed.")

        return await self.download_video(uri, segment_id=segment_id)

    async def _poll_video_operation(self, client: genai.Client, operation: Any) -> Any:
        """Poll a Veo operation until done. Polling errors are not fatal."""
        interval = self.config.pipeline.video_poll_interval_seconds
        polls = 0

        while not operation.done:
            await self._sleep(interval)
            polls += 1
            try:
                operation = await client.aio.operations.get(operation)
            except Exception as e:
                logger.warning(f"Veo poll warning (poll {polls}): {type(e).__name__}: {e}")
                continue
            logger.debug(f"Veo poll {polls}: done={operation.done}")

        return operation

    async def download_video(
        self,
        video_url: str,
        segment_id: Optional[str] = None,
        output_dir: Optional[str] = None,
    ) -> str:
        """
        Download a rendered video to local storage.

        Args:
            video_url: The video URI returned by Veo
            segment_id: Segment ID for the filename
            output_dir: Base output directory (defaults to config)

        Returns:
            Local path to the downloaded file
        """
        base_dir = Path(output_dir or self.config.pipeline.output_dir)
        base_dir.mkdir(parents=True, exist_ok=True)

        suffix = uuid.uuid4().hex[:8]
        filename = f"segment_{segment_id}_{suffix}.mp4" if segment_id else f"video_{suffix}.mp4"
        output_path = base_dir / filename

        client = await self._get_http()
        try:
            response = await client.get(
                video_url,
                headers={"x-goog-api-key": self.config.api.google_api_key},
                follow_redirects=True,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise GenerationError(f"Video download failed: {type(e).__name__}: {e}") from e

        output_path.write_bytes(response.content)
        logger.info(f"Video downloaded: {output_path} ({len(response.content) / 1024 / 1024:.1f} MB)")
        return str(output_path)
