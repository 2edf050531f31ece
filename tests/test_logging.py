from __future__ import annotations

import logging
from pathlib import Path

from pagestats_pipeline.logging_config import LOG_FORMAT, configure_logging


def test_configure_logging_adds_stream_handler() -> None:
    # Ensure configuring logging doesn't raise and attaches a StreamHandler
    configure_logging(None)
    root = logging.getLogger()
    assert any(isinstance(h, logging.StreamHandler) for h in root.handlers)


def test_configure_logging_creates_log_directory(tmp_path: Path) -> None:
    log_path = tmp_path / "nested" / "pagestats.log"
    configure_logging(log_path)
    assert log_path.parent.is_dir()


def test_log_format_is_pipe_separated() -> None:
    assert LOG_FORMAT == "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
