import json
import logging
import sys
from pathlib import Path
from typing import Any, cast

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)

SENSITIVE_KEYS = frozenset({"api_key", "api_secret", "secret", "password", "token"})
REDACTED = "***REDACTED***"


class InterceptHandler(logging.Handler):
    """Routes standard `logging` records (httpx, websockets) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside the logging module so loguru reports it.
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = cast(Any, frame.f_back)
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def _redact_sensitive(record: dict[str, Any]) -> bool:
    """Masks sensitive `extra` values in place. Always lets the record through."""
    extra = record["extra"]
    for key in SENSITIVE_KEYS.intersection(extra):
        if isinstance(extra[key], str):
            extra[key] = REDACTED
    return True


def _json_format(record: dict[str, Any]) -> str:
    """Serializes a record to one JSON line.

    Loguru treats the returned string as a format template, so the JSON is
    stashed in `extra` and referenced from the template.
    """
    payload = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "source": {
            "name": record["name"],
            "file": f"{record['file'].name}:{record['line']}",
            "function": record["function"],
        },
        "extra": {k: v for k, v in record["extra"].items() if k != "_json"},
    }
    if record["exception"] is not None:
        payload["exception"] = repr(record["exception"].value)
    record["extra"]["_json"] = json.dumps(payload, default=str)
    return "{extra[_json]}\n"


def setup_logging(
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    log_dir: Path | None = None,
    enqueue: bool = True,
) -> None:
    """Configures the process-wide loguru logger.

    Removes the default handler, adds a colourised stderr sink and, if
    `log_dir` is given, a daily-rotated JSON-lines file sink. Standard
    library logging is intercepted so third-party libraries end up in the
    same sinks.

    Args:
        console_level: The minimum log level for console output.
        file_level: The minimum log level for file output.
        log_dir: Directory for log files. If None, file logging is disabled.
        enqueue: Write file records from a background thread.
    """
    logger.remove()
    logger.add(
        sys.stderr,
        level=console_level.upper(),
        format=CONSOLE_FORMAT,
        colorize=True,
        filter=_redact_sensitive,
    )

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "candlestream_{time:YYYY-MM-DD}.log",
            level=file_level.upper(),
            format=_json_format,
            rotation="00:00",  # New file at midnight
            retention="7 days",
            compression="zip",
            filter=_redact_sensitive,
            enqueue=enqueue,
            backtrace=False,
            diagnose=False,
            encoding="utf-8",
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    # The websocket client logs every frame at DEBUG.
    logging.getLogger("websockets").setLevel(logging.INFO)

    logger.info("Logging configured successfully.")
