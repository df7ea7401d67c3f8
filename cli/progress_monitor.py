#!/usr/bin/env python3
"""
CLI Progress Monitor for the Mission Console

Connects to the server's SSE stream and displays the console log with
visual formatting.

Usage:
    python -m cli.progress_monitor
    python -m cli.progress_monitor --server http://localhost:8765 --once
"""

import argparse
import asyncio
import json
from typing import Optional

import aiohttp


# ANSI color codes
class Colors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"


def colored(text: str, color: str) -> str:
    """Apply color to text."""
    return f"{color}{text}{Colors.RESET}"


def progress_bar(done: int, total: int, width: int = 30) -> str:
    """Create a visual progress bar for segments processed out of total."""
    percent = 100.0 * done / total if total else 0.0
    filled = int(percent / 100 * width)
    bar = "█" * filled + "░" * (width - filled)

    if percent >= 100:
        color = Colors.GREEN
    elif percent >= 50:
        color = Colors.CYAN
    elif percent >= 25:
        color = Colors.YELLOW
    else:
        color = Colors.WHITE

    return colored(f"[{bar}]", color) + f" {done}/{total}"


# Icons and colors for event types
TYPE_CONFIG = {
    "connected": ("🔌", Colors.DIM),
    "started": ("🚀", Colors.GREEN),
    "completed": ("✅", Colors.GREEN),
    "cancelled": ("⏹️", Colors.YELLOW),
    "stage_started": ("▶️", Colors.CYAN),
    "stage_completed": ("✔️", Colors.GREEN),
    "stage_failed": ("✖️", Colors.RED),
    "pipeline_succeeded": ("🎬", Colors.GREEN),
    "pipeline_failed": ("🔴", Colors.RED),
    "segment_skipped": ("⏭️", Colors.DIM),
    "retry": ("🔄", Colors.YELLOW),
    "asset_generated": ("📦", Colors.CYAN),
    "credentials_required": ("🔑", Colors.MAGENTA + Colors.BOLD),
    "info": ("ℹ️", Colors.BLUE),
    "warning": ("⚠️", Colors.YELLOW),
    "error": ("🔴", Colors.RED),
}


def format_event(event: dict) -> str:
    """Format event for display."""
    event_type = event.get("type", "info")
    message = event.get("message", "")
    data = event.get("data", {})
    icon, color = TYPE_CONFIG.get(event_type, ("•", Colors.WHITE))

    lines = []

    # Stage headers
    if event_type == "stage_started":
        step = event.get("step", 0)
        total = event.get("total_steps", 3)
        stage = (event.get("stage") or "unknown").upper()
        lines.append(
            colored(f"─── {icon} [{event.get('segment_id')}] Step {step}/{total}: {stage} ───", color)
        )

    elif event_type == "retry":
        wait_ms = data.get("wait_ms", 0)
        lines.append(f"{icon} {colored(message, color)}")
        lines.append(colored(f"    └─ call {data.get('call_id')} resumes in {wait_ms / 1000:.1f}s", Colors.DIM))

    elif event_type == "credentials_required":
        lines.append("")
        lines.append(colored("════════════════════════════════════════", Colors.MAGENTA))
        lines.append(f"{icon} {colored('API KEY REQUIRED', color)}")
        lines.append(f"    {message}")
        lines.append(colored("    POST /credentials with a valid key to continue", Colors.DIM))
        lines.append(colored("════════════════════════════════════════", Colors.MAGENTA))

    elif event_type in ("error", "stage_failed"):
        lines.append(f"{icon} {colored(message, color)}")
        if "error" in data and data["error"] not in message:
            lines.append(colored(f"    Error: {data['error']}", Colors.DIM))

    elif event_type == "asset_generated":
        asset_type = data.get("asset_type", "asset")
        lines.append(f"{icon} Generated: {colored(asset_type, Colors.CYAN)} for segment {event.get('segment_id')}")
        if data.get("url"):
            lines.append(colored(f"    → {data['url']}", Colors.DIM))

    elif event_type == "completed":
        lines.append(f"{icon} {colored(message, color)}")
        for key in ("succeeded", "failed", "skipped"):
            if data.get(key):
                lines.append(colored(f"    {key}: {', '.join(data[key])}", Colors.DIM))

    else:
        lines.append(f"{icon} {colored(message, color)}")

    return "\n".join(lines)


class ProgressMonitor:
    """CLI progress monitor for the console stream."""

    def __init__(
        self,
        server_url: str = "http://localhost:8765",
        once: bool = False,
    ):
        self.server_url = server_url.rstrip("/")
        self.stream_url = f"{self.server_url}/stream"
        self.once = once

        self._running = False
        self._total_segments = 0
        self._processed = 0

    async def start(self):
        """Start monitoring progress."""
        self._running = True

        print(colored("\n╔═══════════════════════════════════════════╗", Colors.CYAN))
        print(colored("║  Mission Console Monitor                  ║", Colors.CYAN))
        print(colored("╚═══════════════════════════════════════════╝", Colors.CYAN))
        print(f"Server:   {colored(self.stream_url, Colors.DIM)}")
        print(colored("─" * 45, Colors.DIM))
        print()

        retry_count = 0
        max_retries = 5

        while self._running and retry_count < max_retries:
            try:
                await self._stream_events()
                break  # Clean exit
            except aiohttp.ClientError as e:
                retry_count += 1
                if retry_count < max_retries:
                    wait = 2 ** retry_count
                    print(
                        colored(
                            f"\n⚠️ Connection lost ({e}). Retrying in {wait}s... ({retry_count}/{max_retries})",
                            Colors.YELLOW,
                        )
                    )
                    await asyncio.sleep(wait)
                else:
                    print(colored(f"\n❌ Failed to connect after {max_retries} attempts", Colors.RED))
            except asyncio.CancelledError:
                break

        print(colored("─" * 45, Colors.DIM))
        print(colored("Monitor stopped.", Colors.DIM))

    async def _stream_events(self):
        """Stream and display events."""
        async with aiohttp.ClientSession() as session:
            async with session.get(self.stream_url) as response:
                if response.status != 200:
                    raise aiohttp.ClientError(f"Server returned {response.status}")

                async for line in response.content:
                    if not self._running:
                        break

                    line = line.decode("utf-8").strip()

                    # Only data lines carry events; ids, names and heartbeats are skipped
                    if line.startswith("data:"):
                        try:
                            event = json.loads(line[5:].strip())
                        except json.JSONDecodeError:
                            continue
                        self._handle_event(event)

    def _handle_event(self, event: dict) -> Optional[str]:
        """Handle incoming event. Returns the printed text."""
        event_type = event.get("type", "")
        text = format_event(event)

        if event_type == "started":
            self._total_segments = event.get("data", {}).get("total_segments", 0)
            self._processed = 0
        elif event_type in ("pipeline_succeeded", "pipeline_failed", "segment_skipped") and self._total_segments:
            self._processed += 1
            text += "\n" + progress_bar(self._processed, self._total_segments)

        print(text)

        # The master run always ends with "completed", even after an abort
        if self.once and event_type == "completed":
            self._running = False
        return text

    def stop(self):
        """Stop monitoring."""
        self._running = False


async def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(
        description="Monitor the mission console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s
    %(prog)s --server http://remote:8765 --once
        """,
    )
    parser.add_argument(
        "--server",
        default="http://localhost:8765",
        help="Console server URL (default: http://localhost:8765)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Exit when the next master run completes",
    )

    args = parser.parse_args(argv)

    monitor = ProgressMonitor(server_url=args.server, once=args.once)

    try:
        await monitor.start()
    except KeyboardInterrupt:
        print(colored("\n\nInterrupted by user.", Colors.YELLOW))
        monitor.stop()


if __name__ == "__main__":
    asyncio.run(main())
