import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cli.progress_monitor import ProgressMonitor, format_event, progress_bar


class TestFormatting:

    def test_stage_header(self):
        text = format_event({
            "type": "stage_started", "segment_id": "2", "stage": "video", "step": 3, "total_steps": 3,
        })
        assert "[2] Step 3/3: VIDEO" in text

    def test_retry_countdown(self):
        text = format_event({
            "type": "retry",
            "message": "Quota reached for [voice-1]. Backing off for 7s...",
            "data": {"call_id": "voice-1", "wait_ms": 6500},
        })
        assert "resumes in 6.5s" in text

    def test_progress_bar(self):
        assert progress_bar(1, 3).endswith(" 1/3")
        assert progress_bar(0, 0).endswith(" 0/0")


class TestMonitor:

    def test_counts_segments_and_stops_once(self, capsys):
        monitor = ProgressMonitor(once=True)
        monitor._running = True

        monitor._handle_event({"type": "started", "message": "go", "data": {"total_segments": 2}})
        text = monitor._handle_event({"type": "pipeline_succeeded", "segment_id": "1", "message": "done"})
        assert text.endswith("1/2")
        assert monitor._running

        monitor._handle_event({"type": "completed", "message": "finished", "data": {"succeeded": ["1"]}})
        assert not monitor._running
        assert "succeeded: 1" in capsys.readouterr().out
