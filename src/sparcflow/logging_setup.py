"""structlog configuration shared by the CLI and embedding hosts."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from sparcflow.config import LoggingConfig


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Route structlog through stdlib logging with one formatter.

    Non-debug levels render JSON lines; DEBUG renders the console format.
    When ``config.file`` is set, records are also written to a rotating file.
    """
    settings = config or LoggingConfig()
    log_level = getattr(logging, settings.level.upper(), logging.INFO)

    shared_processors = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_level == logging.DEBUG:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()

    # stderr keeps stdout free for the CLI's JSON payloads
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(log_level)
    root.addHandler(stream_handler)

    file_path = settings.file.strip()
    if not file_path:
        return
    path = Path(file_path).resolve()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=settings.rotation_max_mb * 1024 * 1024,
            backupCount=settings.rotation_backups,
            encoding="utf-8",
        )
    except OSError as exc:
        sys.stderr.write(f"Log file disabled: could not open {path}: {exc}\n")
        return
    file_handler.setFormatter(formatter)
    file_handler.setLevel(log_level)
    root.addHandler(file_handler)
