"""Structured logging: a readable console stream plus append-only JSON files.

A crawl can run unattended for hours, so everything that reaches the console
also lands in ``<log_dir>/app.log``; errors are duplicated into
``<log_dir>/error.log`` for quick triage after a run.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from pythonjsonlogger import jsonlogger

from catalog_crawler.config import settings

CONSOLE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(timestamp)s %(level)s %(name)s %(message)s"


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON lines with UTC timestamp, level, logger and source location."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"
        if record.funcName:
            log_record["function"] = record.funcName


def _json_file_handler(path: Path, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(CustomJsonFormatter(JSON_FORMAT))
    return handler


def setup_logging(base_dir: str | Path | None = None, level: str | None = None) -> logging.Logger:
    """
    Install the crawler's handlers on the root logger.

    Calling it again replaces the handlers, so the CLI and the API can both
    call it at startup.

    Args:
        base_dir: Directory that holds ``settings.log_dir`` (default: cwd)
        level: Level name overriding ``settings.log_level``

    Returns:
        The configured root logger
    """
    log_path = Path(base_dir) if base_dir else Path.cwd()
    log_path = log_path / settings.log_dir
    log_path.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.log_level).upper()))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.DEBUG)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(console)

    root.addHandler(_json_file_handler(log_path / "app.log", logging.DEBUG))
    root.addHandler(_json_file_handler(log_path / "error.log", logging.ERROR))

    # Playwright's event loop chatter
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    return root


class LoggerAdapter(logging.LoggerAdapter):
    """Merges fixed context (task URL, category) into every record's extra fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> LoggerAdapter:
    """
    Logger bound to per-task context.

    Example:
        get_logger(__name__, task_url=task.url, category=task.category)
    """
    return LoggerAdapter(logging.getLogger(name), context)
