"""
Tests for the produce command's Ctrl+C handling.

Run with:
    python -m pytest tests/test_main.py -v
"""

import os
import sys
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import interrupt_handler


class TestInterruptHandler:

    def test_cancels_when_no_master_run(self):
        session = MagicMock()
        session.request_abort.return_value = False
        task = MagicMock()

        interrupt_handler(session, task)()

        task.cancel.assert_called_once()

    def test_first_press_aborts_master_run(self):
        session = MagicMock()
        session.request_abort.return_value = True
        task = MagicMock()
        handle = interrupt_handler(session, task)

        handle()

        session.request_abort.assert_called_once()
        task.cancel.assert_not_called()

    def test_second_press_cancels(self):
        session = MagicMock()
        session.request_abort.return_value = True
        task = MagicMock()
        handle = interrupt_handler(session, task)

        handle()
        handle()

        assert session.request_abort.call_count == 1
        task.cancel.assert_called_once()
