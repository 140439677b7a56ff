import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from loguru import logger

DEFAULT_LOG_FILE = "claude_panel.log"

_CONSOLE_FORMAT = "<level>{level:<8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | {name}:{function}:{line} - {message}"


@runtime_checkable
class LogConsumer(Protocol):
    def register(self, level: str) -> int: ...
    def describe(self, level: str) -> str: ...


@dataclass
class ConsoleLogConsumer:
    """Always stderr: stdout belongs to the REPL, or to the MCP stdio channel in the prompt server."""

    colorize: bool = True

    def register(self, level: str) -> int:
        return logger.add(sys.stderr, level=level, colorize=self.colorize, format=_CONSOLE_FORMAT)

    def describe(self, level: str) -> str:
        return f"console (stderr, {level})"


@dataclass
class FileLogConsumer:
    path: str = DEFAULT_LOG_FILE
    rotation: str = "10 MB"
    retention: int = 3
    serialize: bool = False

    def register(self, level: str) -> int:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        return logger.add(
            self.path,
            level=level,
            format=_FILE_FORMAT,
            rotation=self.rotation,
            retention=self.retention,
            serialize=self.serialize,
            encoding="utf-8",
            enqueue=True,
        )

    def describe(self, level: str) -> str:
        kind = "json lines" if self.serialize else "text"
        return f"file ({self.path}, {kind}, {level})"


class _InterceptHandler(logging.Handler):
    """Routes records from stdlib loggers (the mcp SDK uses them) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


_CONSUMER_TYPES: dict[str, type] = {
    "console": ConsoleLogConsumer,
    "file": FileLogConsumer,
}

_DEFAULT_CONSUMERS: list[dict[str, Any]] = [
    {"type": "console"},
    {"type": "file", "path": DEFAULT_LOG_FILE},
]


def _build_consumer(config: dict[str, Any], log_dir: Path | None) -> LogConsumer | None:
    sink_type = config.get("type", "")
    cls = _CONSUMER_TYPES.get(sink_type)
    if cls is None:
        logger.warning(f"Unknown log consumer type: {sink_type!r}")
        return None

    kwargs = {k: v for k, v in config.items() if k not in ("type", "level")}
    if cls is FileLogConsumer and log_dir is not None:
        path = Path(kwargs.get("path", DEFAULT_LOG_FILE))
        if not path.is_absolute():
            kwargs["path"] = str(log_dir / path)

    try:
        return cls(**kwargs)
    except TypeError as ex:
        logger.warning(f"Bad options for {sink_type!r} log consumer: {ex}")
        return None


def setup_logging(
    level: str = "INFO",
    consumers: list[dict[str, Any]] | None = None,
    *,
    log_dir: str | Path | None = None,
) -> list[str]:
    """Replace loguru's default sink with the configured consumers.

    Relative file paths are placed under ``log_dir`` when one is given. Records
    from stdlib ``logging`` at WARNING and above are forwarded to the same sinks.
    Returns a description of each registered consumer.
    """
    logger.remove()
    level = level.upper()
    base = Path(log_dir) if log_dir is not None else None

    descriptions: list[str] = []
    for config in consumers if consumers is not None else _DEFAULT_CONSUMERS:
        consumer = _build_consumer(config, base)
        if consumer is None:
            continue
        sink_level = str(config.get("level", level)).upper()
        consumer.register(sink_level)
        descriptions.append(consumer.describe(sink_level))

    logging.basicConfig(handlers=[_InterceptHandler()], level=logging.WARNING, force=True)
    return descriptions
