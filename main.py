#!/usr/bin/env python3
"""
Mission Console - Main Entry Point

Drafts video scripts and produces every segment (voice, keyframe, video)
with live console output.

Usage:
    # Start server mode (API + SSE)
    python main.py server

    # Draft a script only
    python main.py script --topic "Phishing scams targeting bank customers"

    # Draft a script and produce every segment
    python main.py produce --topic "Phishing scams targeting bank customers"

    # Watch a running server's console
    python main.py monitor
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("mission_console")


def _print_event(event):
    print(event.to_cli_line())


def _write_script(script, output_dir: Path) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / "script.json"
    path.write_text(json.dumps(script.model_dump(by_alias=True), indent=2))
    return path


async def draft_script(topic: str, model: Optional[str] = None, output_dir: Optional[str] = None) -> bool:
    """Draft a script and save it as JSON."""
    from services.studio import StudioSession

    session = StudioSession()
    session.tracker.on_event(_print_event)
    try:
        script = await session.generate_script(topic, model)
        if script is None:
            return False
        path = _write_script(script, Path(output_dir or session.config.pipeline.output_dir))
        logger.info(f"Script saved to {path}")
        for segment in script.segments:
            print(f"  [{segment.id}] {segment.time_range}  {segment.title}")
        return True
    finally:
        await session.close()


def interrupt_handler(session, task: asyncio.Task):
    """SIGINT handler: abort the master run first, cancel the task otherwise."""
    abort_requested = False

    def handle_signal():
        nonlocal abort_requested
        if not abort_requested and session.request_abort():
            abort_requested = True
            logger.info("Abort requested: finishing the current segment (Ctrl+C again to stop now)")
            return
        logger.info("Interrupted: cancelling")
        task.cancel()

    return handle_signal


async def produce(topic: str, model: Optional[str] = None, output_dir: Optional[str] = None) -> bool:
    """
    Draft a script and run the master run over all of its segments.

    Ctrl+C during the master run requests a cooperative abort: the segment
    in progress finishes, no further segment starts. Ctrl+C before the master
    run, or a second Ctrl+C, cancels the whole command.
    """
    from services.studio import StudioSession

    session = StudioSession()
    session.tracker.on_event(_print_event)
    base_dir = Path(output_dir or session.config.pipeline.output_dir)

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, interrupt_handler(session, asyncio.current_task()))
    try:
        script = await session.generate_script(topic, model)
        if script is None:
            return False
        _write_script(script, base_dir)

        report = await session.run_master()
        if report is None:
            return False

        for segment in script.segments:
            path = session.export_voice(segment.id, str(base_dir))
            if path:
                logger.info(f"Narration for segment {segment.id} saved to {path}")

        # Re-save with the rendered video locators
        path = _write_script(script, base_dir)
        logger.info(f"Mission saved to {path}")
        return not report.failed and not report.cancelled
    except asyncio.CancelledError:
        logger.warning("Production interrupted")
        return False
    finally:
        loop.remove_signal_handler(signal.SIGINT)
        await session.close()


async def monitor_console(server_url: str = "http://localhost:8765", once: bool = False):
    """Monitor a running server's console."""
    from cli.progress_monitor import ProgressMonitor

    monitor = ProgressMonitor(server_url=server_url, once=once)
    await monitor.start()


def main():
    parser = argparse.ArgumentParser(
        description="Mission Console - AI Video Mission Production",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start API server
    python main.py server

    # Draft a script
    python main.py script --topic "Fake delivery SMS"

    # Produce a whole mission with a specific script model
    python main.py produce --topic "Fake delivery SMS" --model gemini-3-flash-preview

    # Watch progress of a server
    python main.py monitor --server http://localhost:8765
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Server command
    server_parser = subparsers.add_parser("server", help="Start API server")
    server_parser.add_argument("--host", default="0.0.0.0", help="Host to bind")
    server_parser.add_argument("--port", type=int, default=8765, help="Port to bind")

    # Script and produce commands
    for name, help_text in (("script", "Draft a script"), ("produce", "Draft a script and produce every segment")):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("--topic", "-t", required=True, help="Mission topic")
        sub.add_argument("--model", "-m", help="Script model id")
        sub.add_argument("--output", "-o", help="Output directory")

    # Monitor command
    mon_parser = subparsers.add_parser("monitor", help="Monitor console progress")
    mon_parser.add_argument(
        "--server",
        default="http://localhost:8765",
        help="Console server URL",
    )
    mon_parser.add_argument("--once", action="store_true", help="Exit after the next master run")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Run appropriate command
    if args.command == "server":
        from services.server import run_server

        run_server(host=args.host, port=args.port)

    elif args.command == "script":
        ok = asyncio.run(draft_script(args.topic, args.model, args.output))
        sys.exit(0 if ok else 1)

    elif args.command == "produce":
        ok = asyncio.run(produce(args.topic, args.model, args.output))
        sys.exit(0 if ok else 1)

    elif args.command == "monitor":
        asyncio.run(monitor_console(args.server, args.once))


if __name__ == "__main__":
    main()
