"""Tests for logger.py — setup_logging() and JsonFormatter.

Strategy: Mock logging.basicConfig to verify setup_logging passes correct args,
since pytest's log capture plugin interferes with actual basicConfig calls.
"""

import json
import logging
import sys
from unittest.mock import patch

from gitnote_sync.logger import JsonFormatter, setup_logging


def _record(msg="Hello %s", args=("world",), level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="gitnote_sync.sync.engine",
        level=level,
        pathname="engine.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=exc_info,
    )


# ---------------------------------------------------------------------------
# setup_logging tests
# ---------------------------------------------------------------------------


class TestSetupLogging:
    """Tests for setup_logging()."""

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_logs_to_stderr(self, mock_basic):
        """Records go to stderr so stdout stays free for the report."""
        setup_logging()

        mock_basic.assert_called_once()
        handlers = mock_basic.call_args[1]["handlers"]
        assert len(handlers) == 1
        assert handlers[0].stream is sys.stderr

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_default_level_is_info(self, mock_basic):
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_env_log_level_honored(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "error")
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.ERROR

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_debug_beats_env(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "ERROR")
        setup_logging(debug=True)
        assert mock_basic.call_args[1]["level"] == logging.DEBUG

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_unknown_level_falls_back_to_info(self, mock_basic, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "chatty")
        setup_logging()
        assert mock_basic.call_args[1]["level"] == logging.INFO

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_log_file_adds_file_handler(self, mock_basic, tmp_path):
        """A log file adds a FileHandler next to the stderr handler."""
        setup_logging(log_file=str(tmp_path / "sync.log"))

        handlers = mock_basic.call_args[1]["handlers"]
        file_handlers = [h for h in handlers if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 2
        assert len(file_handlers) == 1
        for h in file_handlers:
            h.close()

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_json_format_uses_json_formatter(self, mock_basic):
        setup_logging(debug_format="json")
        handlers = mock_basic.call_args[1]["handlers"]
        assert all(isinstance(h.formatter, JsonFormatter) for h in handlers)

    @patch("gitnote_sync.logger.logging.basicConfig")
    def test_third_party_silenced(self, _mock_basic):
        """Non-DEBUG mode silences the HTTP stack."""
        setup_logging()

        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("requests").level == logging.WARNING


# ---------------------------------------------------------------------------
# JsonFormatter tests
# ---------------------------------------------------------------------------


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_fields(self):
        data = json.loads(JsonFormatter().format(_record()))
        assert "ts" in data
        assert data["level"] == "INFO"
        assert data["logger"] == "gitnote_sync.sync.engine"
        assert data["msg"] == "Hello world"

    def test_includes_exception_on_one_line(self):
        try:
            raise ValueError("bad payload")
        except ValueError:
            exc_info = sys.exc_info()

        output = JsonFormatter().format(
            _record("Skipping", (), logging.WARNING, exc_info)
        )

        assert "\n" not in output
        data = json.loads(output)
        assert "ValueError" in data["exc"]
        assert "bad payload" in data["exc"]
