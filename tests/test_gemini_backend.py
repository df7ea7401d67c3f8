"""
Tests for the Gemini generation backend with a mocked SDK client.

Run with:
    python -m pytest tests/test_gemini_backend.py -v
"""

import json
import os
import sys
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import RetryPolicy
from core.errors import ErrorKind, GenerationError, RetriesExhausted
from core.retry import RetryEventBus, RetryingCaller
from services.generation.gemini import GeminiBackend, pcm_to_wav, strip_code_fence
from services.generation.models import ConditioningImage

QUOTA_MESSAGE = json.dumps({
    "error": {"code": 429, "message": "Quota exceeded for metric", "status": "RESOURCE_EXHAUSTED"}
})


def inline_response(data: bytes):
    part = SimpleNamespace(inline_data=SimpleNamespace(data=data))
    return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=[part]))])


def text_response(text: str):
    return SimpleNamespace(text=text)


@pytest.fixture
def bus():
    return RetryEventBus()


@pytest.fixture
def retry_sleep():
    return AsyncMock()


@pytest.fixture
def client():
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.models.generate_videos = AsyncMock()
    client.aio.operations.get = AsyncMock()
    return client


@pytest.fixture
def gemini(config, client, bus, retry_sleep, no_sleep):
    config.retry = RetryPolicy(max_attempts=3)
    caller = RetryingCaller(bus, config.retry, sleep=retry_sleep)
    return GeminiBackend(config, caller=caller, client=client, sleep=no_sleep)


class TestTextGeneration:

    @pytest.mark.asyncio
    async def test_generate_script(self, gemini, client):
        client.aio.models.generate_content.return_value = text_response('{"topic": "t", "segments": []}')

        text = await gemini.generate_script("Phishing", model="gemini-3-flash-preview")

        assert json.loads(text)["topic"] == "t"
        kwargs = client.aio.models.generate_content.await_args.kwargs
        assert kwargs["model"] == "gemini-3-flash-preview"
        assert kwargs["config"].response_mime_type == "application/json"

    @pytest.mark.asyncio
    async def test_quota_is_retried_and_announced(self, gemini, client, bus, retry_sleep):
        observer = MagicMock()
        bus.subscribe(observer)
        client.aio.models.generate_content.side_effect = [
            Exception(QUOTA_MESSAGE),
            text_response("{}"),
        ]

        assert await gemini.generate_script("Phishing") == "{}"

        observer.assert_called_once_with("script-gen", 5000)
        retry_sleep.assert_awaited_once_with(5.0)

    @pytest.mark.asyncio
    async def test_quota_exhaustion(self, gemini, client):
        client.aio.models.generate_content.side_effect = Exception(QUOTA_MESSAGE)

        with pytest.raises(RetriesExhausted) as exc_info:
            await gemini.generate_speech("hello", "4")

        assert exc_info.value.call_id == "voice-4"
        assert client.aio.models.generate_content.await_count == 3
        assert str(exc_info.value.last_error) == "Quota exceeded for metric"

    @pytest.mark.asyncio
    async def test_fatal_error_normalized_once(self, gemini, client, retry_sleep):
        original = ValueError("Invalid argument: prompt blocked")
        client.aio.models.generate_content.side_effect = original

        with pytest.raises(GenerationError) as exc_info:
            await gemini.generate_script("Phishing")

        assert exc_info.value.kind == ErrorKind.FATAL
        assert exc_info.value.__cause__ is original
        assert client.aio.models.generate_content.await_count == 1
        retry_sleep.assert_not_called()

    @pytest.mark.asyncio
    async def test_scan_topics_strips_fence(self, gemini, client):
        topics = [{"title": "SIM swap", "description": "Carrier fraud", "relevance": "High"}]
        client.aio.models.generate_content.return_value = text_response(f"```json\n{json.dumps(topics)}\n```")

        result = await gemini.scan_topics()

        assert result[0].title == "SIM swap"

    @pytest.mark.asyncio
    async def test_missing_key(self, config, bus):
        config.api.google_api_key = ""
        backend = GeminiBackend(config, caller=RetryingCaller(bus, config.retry))

        with pytest.raises(GenerationError, match="GOOGLE_API_KEY"):
            await backend.generate_script("Phishing")


class TestMediaGeneration:

    @pytest.mark.asyncio
    async def test_thumbnail(self, gemini, client):
        client.aio.models.generate_content.return_value = inline_response(b"\x89PNG")

        assert await gemini.generate_thumbnail("a dark desk", "1") == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_thumbnail_without_image(self, gemini, client):
        client.aio.models.generate_content.return_value = SimpleNamespace(candidates=[])

        with pytest.raises(GenerationError, match="Thumbnail generation failed"):
            await gemini.generate_thumbnail("a dark desk", "1")

    @pytest.mark.asyncio
    async def test_speech(self, gemini, client, config):
        client.aio.models.generate_content.return_value = inline_response(b"\x00\x01\x02\x03")

        assert await gemini.generate_speech("hello", "1") == b"\x00\x01\x02\x03"

        speech = client.aio.models.generate_content.await_args.kwargs["config"].speech_config
        assert speech.voice_config.prebuilt_voice_config.voice_name == config.models.speech_voice

    def test_wav_container(self):
        wav = pcm_to_wav(b"\x00\x00" * 240)
        assert wav[:4] == b"RIFF"
        assert wav[8:12] == b"WAVE"

    def test_strip_code_fence(self):
        assert strip_code_fence("```\n[]\n```") == "[]"
        assert strip_code_fence(" [] ") == "[]"


class TestVideoGeneration:

    @pytest.fixture
    def downloads(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, content=b"mp4-bytes")

        return requests, httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_poll_and_download(self, gemini, client, downloads, no_sleep, tmp_path):
        requests, http_client = downloads
        gemini._http_client = http_client
        done = SimpleNamespace(
            done=True,
            error=None,
            response=SimpleNamespace(generated_videos=[
                SimpleNamespace(video=SimpleNamespace(uri="https://videos.example/clip.mp4")),
            ]),
        )
        client.aio.models.generate_videos.return_value = SimpleNamespace(done=False)
        client.aio.operations.get.side_effect = [RuntimeError("transient poll failure"), done]

        path = await gemini.generate_video(
            "a dark desk",
            "2",
            resolution="1080p",
            aspect_ratio="9:16",
            image=ConditioningImage(b"png-2"),
        )

        assert os.path.dirname(path) == str(tmp_path)
        assert os.path.basename(path).startswith("segment_2_")
        with open(path, "rb") as f:
            assert f.read() == b"mp4-bytes"

        # Poll failures are logged, not fatal
        assert [c.args[0] for c in no_sleep.await_args_list] == [10.0, 10.0]
        assert requests[0].headers["x-goog-api-key"] == "test-key"

        kwargs = client.aio.models.generate_videos.await_args.kwargs
        assert kwargs["config"].resolution == "1080p"
        assert kwargs["config"].aspect_ratio == "9:16"
        assert kwargs["image"].image_bytes == b"png-2"
        await gemini.close()

    @pytest.mark.asyncio
    async def test_no_video_uri(self, gemini, client):
        client.aio.models.generate_videos.return_value = SimpleNamespace(
            done=True, error=None, response=SimpleNamespace(generated_videos=[]),
        )

        with pytest.raises(GenerationError, match="Video generation failed"):
            await gemini.generate_video("a dark desk", "2")

    @pytest.mark.asyncio
    async def test_submit_quota_retried(self, gemini, client, bus, downloads):
        _, gemini._http_client = downloads
        observer = MagicMock()
        bus.subscribe(observer)
        done = SimpleNamespace(
            done=True,
            error=None,
            response=SimpleNamespace(generated_videos=[
                SimpleNamespace(video=SimpleNamespace(uri="https://videos.example/clip.mp4")),
            ]),
        )
        client.aio.models.generate_videos.side_effect = [Exception("RESOURCE_EXHAUSTED. retry in 1s"), done]

        await gemini.generate_video("a dark desk", "3")

        observer.assert_called_once_with("video-3", 3000)
        await gemini.close()
