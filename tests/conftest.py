"""
Shared fixtures: an in-memory generation backend and a test configuration.
"""

import asyncio
import json
import os
import sys
from unittest.mock import AsyncMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import Config
from services.generation.models import ScriptDocument, TrendingTopic

SCRIPT_PAYLOAD = {
    "topic": "Fake delivery SMS",
    "segments": [
        {
            "id": "1",
            "title": "The Hook",
            "timeRange": "0:00-0:15",
            "visualPrompt": "A phone buzzing on a dark desk",
            "audioSfx": "Notification chime",
            "voicemail": "You have a package waiting. Or do you?",
        },
        {
            "id": "2",
            "title": "The Trap",
            "timeRange": "0:15-0:30",
            "visualPrompt": "A cloned courier website",
            "audioSfx": "Keyboard clicks",
            "voicemail": "The link leads to a perfect copy of the courier.",
        },
        {
            "id": "3",
            "title": "The Defense",
            "timeRange": "0:30-0:45",
            "visualPrompt": "A hand deleting the message",
            "audioSfx": "Swoosh",
            "voicemail": "Never pay customs fees through a text link.",
        },
    ],
}

SCRIPT_JSON = json.dumps(SCRIPT_PAYLOAD)


class FakeBackend:
    """
    In-memory Generation Backend.

    Records every call as (kind, segment_id). Tests can hold a kind open with
    an asyncio.Event in ``gates`` or make a call fail via ``failures``.
    """

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.gates: dict[str, asyncio.Event] = {}
        self.failures: dict[tuple[str, str], BaseException] = {}
        self.video_kwargs: dict[str, dict] = {}
        self.script_text = SCRIPT_JSON
        self.topics = [TrendingTopic(title="QR code parking scams", description="Fake stickers on meters")]
        self.close = AsyncMock()

    async def _enter(self, kind: str, segment_id: str):
        self.calls.append((kind, segment_id))
        gate = self.gates.get(kind)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get((kind, segment_id))
        if failure is not None:
            raise failure

    def calls_of(self, kind: str) -> list[str]:
        return [segment_id for call_kind, segment_id in self.calls if call_kind == kind]

    async def generate_script(self, topic, model=None):
        await self._enter("script", topic)
        return self.script_text

    async def scan_topics(self):
        await self._enter("scan", "")
        return self.topics

    async def generate_speech(self, text, segment_id):
        await self._enter("voice", segment_id)
        return f"pcm-{segment_id}".encode()

    async def generate_thumbnail(self, prompt, segment_id):
        await self._enter("keyframe", segment_id)
        return f"png-{segment_id}".encode()

    async def generate_video(self, prompt, segment_id, **kwargs):
        await self._enter("video", segment_id)
        self.video_kwargs[segment_id] = kwargs
        return f"output/segment_{segment_id}.mp4"


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def config(tmp_path):
    config = Config()
    config.api.google_api_key = "test-key"
    config.pipeline.output_dir = str(tmp_path)
    return config


@pytest.fixture
def script():
    return ScriptDocument.model_validate_json(SCRIPT_JSON)


@pytest.fixture
def no_sleep():
    """Records sleeps instead of waiting."""
    return AsyncMock()
