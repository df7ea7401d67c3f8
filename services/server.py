"""
Mission Console HTTP + SSE Server

FastAPI server that provides:
- GET /health - Health check
- GET /state - Full session snapshot
- POST /script - Draft a script for a topic
- POST /topics/scan, POST /topics/deploy - Trending topic suggestions
- PATCH /segments/{id}, POST /segments/{id}/thumbnail - Segment editing
- POST /segments/{id}/keyframe|video|voice|pipeline - Generations
- POST /master, POST /master/abort - Master run over every segment
- PUT /render - Render settings
- POST /credentials - Replace the API key
- GET /stream - SSE stream of console events

Usage:
    # Start server
    python -m uvicorn services.server:app --host 0.0.0.0 --port 8765

    # Or via main.py
    python main.py server
"""

import asyncio
import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from core.errors import GenerationBusy
from services.generation.models import TrendingTopic
from services.streaming.progress_tracker import EventType, ProgressEvent
from services.studio.session import StudioSession

logger = logging.getLogger(__name__)

# Global session instance (one operator console per process)
_session: Optional[StudioSession] = None

# Strong references so running master runs are not garbage collected
_background_tasks: set[asyncio.Task] = set()

# Event queues for pushing console events to SSE clients
_event_queues: list[asyncio.Queue] = []


def configure_session(session: Optional[StudioSession]):
    """Install the session the app serves. Must be called before startup to take effect."""
    global _session
    _session = session


def get_session() -> StudioSession:
    if _session is None:
        raise HTTPException(status_code=503, detail="Session not initialized")
    return _session


def _push_event(event: ProgressEvent):
    """Fan a console event out to every SSE subscriber."""
    for queue in list(_event_queues):
        try:
            queue.put_nowait(event)
        except asyncio.QueueFull:
            # Client is too slow, drop the event for it
            logger.warning("Event queue full for SSE subscriber")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    global _session

    logger.info("Starting Mission Console server...")
    if _session is None:
        _session = StudioSession()
    for issue in _session.config.validate():
        logger.warning(f"Config: {issue}")
    remove_listener = _session.tracker.on_event(_push_event)

    yield

    logger.info("Shutting down Mission Console server...")
    remove_listener()
    for task in list(_background_tasks):
        task.cancel()
    await _session.close()
    _session = None


app = FastAPI(
    title="Mission Console API",
    description="AI video mission production with real-time progress streaming",
    version="1.0.0",
    lifespan=lifespan,
)


# Request Models
class ScriptRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    topic: str = Field(min_length=1)
    model: Optional[str] = None


class SegmentUpdate(BaseModel):
    """Editable segment fields. Omitted fields are left unchanged."""
    title: Optional[str] = None
    time_range: Optional[str] = None
    visual_prompt: Optional[str] = None
    audio_sfx: Optional[str] = None
    narration: Optional[str] = None
    voice_speed: Optional[float] = None
    voice_pitch: Optional[Literal["low", "normal", "high"]] = None


class ThumbnailUpload(BaseModel):
    data: str  # base64
    mime_type: str = "image/png"


class RenderUpdate(BaseModel):
    resolution: Optional[Literal["720p", "1080p"]] = None
    aspect_ratio: Optional[Literal["16:9", "9:16"]] = None
    fps: Optional[str] = None
    video_model: Optional[str] = None


class CredentialsRequest(BaseModel):
    api_key: str = Field(min_length=1)


def _require_script(session: StudioSession):
    if session.script is None:
        raise HTTPException(status_code=400, detail="No script loaded")


async def _segment_action(coro) -> Any:
    """Await a segment generation, mapping guard conflicts and lookups to HTTP errors."""
    try:
        return await coro
    except GenerationBusy as e:
        raise HTTPException(status_code=409, detail=str(e))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))


@contextmanager
def _collect_errors(session: StudioSession):
    """Gather the console errors logged while the with-block runs."""
    errors: list[str] = []

    def collect(event: ProgressEvent):
        if event.event_type in (EventType.STAGE_FAILED, EventType.ERROR):
            errors.append(event.message)

    remove = session.tracker.on_event(collect)
    try:
        yield errors
    finally:
        remove()


def _generation_failed(errors: list[str], what: str) -> HTTPException:
    detail = errors[-1] if errors else f"{what} failed"
    return HTTPException(status_code=502, detail=detail)


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Mission Console",
        "version": "1.0.0",
        "endpoints": {
            "GET /state": "Session snapshot",
            "POST /script": "Draft a script",
            "POST /topics/scan": "Scan trending topics",
            "POST /segments/{id}/pipeline": "Run voice, keyframe and video for one segment",
            "POST /master": "Run every segment in order",
            "GET /stream": "SSE console stream",
        },
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    session = get_session()
    return {
        "status": "healthy",
        "app_state": session.app_state.value,
        "pipeline_active": session.orchestrator.pipeline_active,
        "master_active": session.orchestrator.master_active,
        "timestamp": datetime.utcnow().isoformat(),
    }


@app.get("/state")
async def state():
    return get_session().snapshot()


@app.post("/script")
async def generate_script(request: ScriptRequest):
    session = get_session()
    if session.automating:
        raise HTTPException(status_code=409, detail="Script generation already in progress")

    with _collect_errors(session) as errors:
        script = await session.generate_script(request.topic, request.model)
    if script is None:
        raise _generation_failed(errors, "Script generation")
    return script.model_dump(by_alias=True)


@app.post("/topics/scan")
async def scan_topics():
    topics = await get_session().scan_topics()
    return [topic.model_dump() for topic in topics]


@app.post("/topics/deploy")
async def deploy_topic(topic: TrendingTopic):
    session = get_session()
    if session.automating:
        raise HTTPException(status_code=409, detail="Script generation already in progress")

    with _collect_errors(session) as errors:
        script = await session.deploy_topic(topic)
    if script is None:
        raise _generation_failed(errors, "Script generation")
    return script.model_dump(by_alias=True)


@app.patch("/segments/{segment_id}")
async def update_segment(segment_id: str, update: SegmentUpdate):
    session = get_session()
    _require_script(session)
    try:
        segment = session.update_segment(segment_id, **update.model_dump(exclude_none=True))
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return segment.model_dump(by_alias=True)


@app.post("/segments/{segment_id}/thumbnail")
async def upload_thumbnail(segment_id: str, upload: ThumbnailUpload):
    session = get_session()
    _require_script(session)
    try:
        data = base64.b64decode(upload.data, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=422, detail="Thumbnail data is not valid base64")
    try:
        url = session.upload_thumbnail(segment_id, data, upload.mime_type)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"segment_id": segment_id, "thumbnail_url": url}


@app.post("/segments/{segment_id}/keyframe")
async def generate_keyframe(segment_id: str):
    session = get_session()
    _require_script(session)
    with _collect_errors(session) as errors:
        url = await _segment_action(session.generate_keyframe(segment_id))
    if url is None:
        raise _generation_failed(errors, "Keyframe generation")
    return {"segment_id": segment_id, "thumbnail_url": url}


@app.post("/segments/{segment_id}/video")
async def generate_video(segment_id: str):
    session = get_session()
    _require_script(session)
    with _collect_errors(session) as errors:
        url = await _segment_action(session.generate_video(segment_id))
    if url is None:
        raise _generation_failed(errors, "Video generation")
    return {"segment_id": segment_id, "video_url": url}


@app.post("/segments/{segment_id}/voice")
async def toggle_voice(segment_id: str):
    session = get_session()
    _require_script(session)
    was_playing = session.currently_playing_id == segment_id
    with _collect_errors(session) as errors:
        audio = await _segment_action(session.toggle_voice(segment_id))
    if audio is None and not was_playing:
        raise _generation_failed(errors, "Voice generation")
    return {
        "segment_id": segment_id,
        "playing": session.currently_playing_id == segment_id,
        "audio_bytes": len(audio) if audio else 0,
    }


@app.post("/segments/{segment_id}/pipeline")
async def run_pipeline(segment_id: str):
    session = get_session()
    _require_script(session)
    if session.orchestrator.pipeline_active:
        raise HTTPException(
            status_code=409,
            detail=f"Pipeline already running for segment {session.orchestrator.active_pipeline_id}",
        )
    success = await _segment_action(session.run_pipeline(segment_id))
    return {"segment_id": segment_id, "success": success}


@app.post("/master")
async def start_master():
    """Start the master run in the background. Progress arrives on /stream."""
    session = get_session()
    _require_script(session)
    if session.orchestrator.master_active:
        raise HTTPException(status_code=409, detail="Master run already active")

    task = asyncio.create_task(_run_master(session))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return {"status": "started", "segments": len(session.script.segments)}


async def _run_master(session: StudioSession):
    try:
        report = await session.run_master()
        if report is not None:
            logger.info(f"Master run finished: {report.to_dict()}")
    except Exception as e:
        logger.exception(f"Master run crashed: {e}")
        session.tracker.error(f"Master run crashed: {session.format_error(e)}")


@app.post("/master/abort")
async def abort_master():
    return {"aborted": get_session().request_abort()}


@app.put("/render")
async def update_render(update: RenderUpdate):
    session = get_session()
    for name, value in update.model_dump(exclude_none=True).items():
        setattr(session.render, name, value)
    return session.snapshot()["render"]


@app.post("/credentials")
async def select_credentials(request: CredentialsRequest):
    session = get_session()
    session.select_credentials(request.api_key)
    return {"app_state": session.app_state.value}


@app.get("/stream")
async def stream():
    """
    SSE endpoint for the console log.

    Event types follow ProgressEvent (stage_started, retry, asset_generated,
    credentials_required, ...) plus an initial "connected" event carrying
    the session snapshot. Idle streams get a heartbeat comment every 30s.

    Usage:
        curl -N http://localhost:8765/stream
    """
    session = get_session()

    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        _event_queues.append(queue)
        try:
            yield _format_sse({
                "type": "connected",
                "message": "Connected to console stream",
                "state": session.snapshot(),
                "timestamp": datetime.utcnow().isoformat(),
            })

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                    yield event.to_sse()
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
        finally:
            if queue in _event_queues:
                _event_queues.remove(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _format_sse(data: dict) -> str:
    """Format data as SSE event."""
    return f"data: {json.dumps(data)}\n\n"


# Module-level run function for main.py
def run_server(host: str = "0.0.0.0", port: int = 8765):
    """Run the server using uvicorn."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
