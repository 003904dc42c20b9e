import json
import logging
import os
import sys

# Config level names -> logging levels.  "silent" still lets errors through.
LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "silent": logging.ERROR,
}

_DATEFMT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    Produces one JSON object per log record with fields: ts, level, logger,
    msg.  Structured context passed as ``extra={"data": {...}}`` is
    included as a "data" field, and exception info as an "exc" field.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data:
            entry["data"] = data
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Plain text formatter that appends structured ``data`` as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        data = getattr(record, "data", None)
        if data:
            text = f"{text} {json.dumps(data, default=str)}"
        return text


def resolve_level(level: str | None, mode: str = "cli") -> int:
    """Map a config level name to a ``logging`` level.

    ``None`` falls back to the ``LOG_LEVEL`` environment variable, then to
    WARNING in MCP mode and INFO otherwise.
    """
    if level is None:
        default_level = "warn" if mode == "mcp" else "info"
        level = os.getenv("LOG_LEVEL", default_level)
    return LEVELS.get(level.lower(), logging.INFO)


def _formatter(log_format: str, with_name: bool = False) -> logging.Formatter:
    if log_format == "json":
        return JsonFormatter(datefmt=_DATEFMT)
    pattern = (
        "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
        if with_name
        else "[%(asctime)s] [%(levelname)s] %(message)s"
    )
    return TextFormatter(pattern, datefmt=_DATEFMT)


def setup_logging(
    mode: str = "cli",
    level: str | None = None,
    log_format: str = "text",
    log_file: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "mcp" for file logging (never stdout), "cli" for stderr logging.
        level: Config level name (debug, info, warn, error, silent).
        log_format: "text" (default) or "json" for one JSON object per line.
        log_file: Log file path.  Also written in CLI mode when given.

    Environment variables:
        LOG_LEVEL: Level used when *level* is not given.
        LOG_FILE: Custom log file path for MCP mode.
                  Default: /tmp/ralph-task-mcp.log
    """
    log_level = resolve_level(level, mode)

    if mode == "mcp":
        # stdio transport uses stdout for JSON-RPC messages
        final_log_file = log_file or os.getenv(
            "LOG_FILE", "/tmp/ralph-task-mcp.log"
        )
        file_handler = logging.FileHandler(final_log_file, mode="a")
        file_handler.setFormatter(_formatter(log_format, with_name=True))
        logging.basicConfig(level=log_level, handlers=[file_handler])
    else:
        handlers: list[logging.Handler] = []
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(_formatter(log_format))
        handlers.append(stderr_handler)

        if log_file:
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setFormatter(_formatter(log_format, with_name=True))
            handlers.append(file_handler)

        logging.basicConfig(level=log_level, handlers=handlers)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
