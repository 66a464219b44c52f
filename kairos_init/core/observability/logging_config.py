"""
Logging setup — one stderr handler plus an optional build log file.

kairos-init usually runs inside an image build, where stderr is the
build output and a file under the image is the only trace left once
the build container is gone.  Both are configured here, once, by
main.py; modules only ever do ``logging.getLogger(__name__)``.

Console level, highest precedence first:

    --debug  >  --verbose  >  --quiet  >  KAIROS_INIT_LOG_LEVEL  >  WARNING

The file handler is enabled by KAIROS_INIT_LOG_FILE and has its own
level (KAIROS_INIT_LOG_FILE_LEVEL, default DEBUG).
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass

LOG_LEVEL_ENV = "KAIROS_INIT_LOG_LEVEL"
LOG_FILE_ENV = "KAIROS_INIT_LOG_FILE"
LOG_FILE_LEVEL_ENV = "KAIROS_INIT_LOG_FILE_LEVEL"

# (threshold, format, datefmt): first row whose threshold >= level wins
_CONSOLE_FORMATS: tuple[tuple[int, str, str | None], ...] = (
    (logging.DEBUG, "%(asctime)s %(levelname)-5s %(name)s:%(lineno)d %(message)s", "%H:%M:%S"),
    (logging.INFO, "%(asctime)s %(levelname)-5s %(message)s", "%H:%M:%S"),
    (logging.CRITICAL, "%(levelname)s: %(message)s", None),
)

_FILE_FORMAT = "%(asctime)s %(levelname)-5s [%(process)d] %(name)s:%(lineno)d %(message)s"
_FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"


def parse_level(level: str | None, default: int = logging.WARNING) -> int:
    """Level name → numeric level; unknown or empty names give ``default``."""
    if not level:
        return default
    numeric = logging.getLevelName(level.strip().upper())
    return numeric if isinstance(numeric, int) else default


def resolve_level(
    *, debug: bool = False, verbose: bool = False, quiet: bool = False, env_level: str | None = None,
) -> str:
    """Console level name from the CLI flags and the environment."""
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    if quiet:
        return "ERROR"
    return env_level or "WARNING"


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "WARNING"
    log_file: str | None = None
    log_file_level: str = "DEBUG"

    @classmethod
    def from_environ(
        cls, environ: Mapping[str, str], *, debug: bool = False, verbose: bool = False, quiet: bool = False,
    ) -> LoggingSettings:
        return cls(
            level=resolve_level(debug=debug, verbose=verbose, quiet=quiet, env_level=environ.get(LOG_LEVEL_ENV)),
            log_file=environ.get(LOG_FILE_ENV) or None,
            log_file_level=environ.get(LOG_FILE_LEVEL_ENV) or "DEBUG",
        )


def _console_handler(level: int) -> logging.Handler:
    fmt, datefmt = next((f, d) for threshold, f, d in _CONSOLE_FORMATS if level <= threshold)
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    return handler


def setup_logging(settings: LoggingSettings) -> None:
    """Install the handlers on the root logger, replacing any present."""
    console_level = parse_level(settings.level)
    handlers = [_console_handler(console_level)]
    root_level = console_level

    if settings.log_file:
        file_level = parse_level(settings.log_file_level, default=logging.DEBUG)
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_FILE_DATEFMT))
        handlers.append(file_handler)
        root_level = min(root_level, file_level)

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(root_level)

    # a broken stderr must not take the build down
    logging.raiseExceptions = False
