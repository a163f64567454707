"""
Bindex Logging

Root logging setup shared by every bindex module:
  - Rich console output with exchange-aware highlighting
    (addresses, ticks, amounts, event names)
  - Optional size-rotated log file (``LOG_FILE_OUTPUT``)
  - Control-character stripping, since token symbols are caller-supplied
  - Settings from ``.env`` through ``bindex.constants``

Usage:
    >>> from bindex.logger import get_logger
    >>> logger = get_logger(__name__)
    >>> logger.info("PoolCreated %s", address)
"""

import logging
import logging.handlers
import re
import sys
import threading
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.highlighter import RegexHighlighter
from rich.logging import RichHandler
from rich.theme import Theme

from .constants import (
    LOG_BACKUP_COUNT,
    LOG_CONSOLE_HIGHLIGHTING,
    LOG_DATE_FORMAT,
    LOG_FILE_OUTPUT,
    LOG_FORMAT,
    LOG_LEVEL,
    LOG_MAX_FILE_SIZE,
)

LOG_FILE_PATH = Path.cwd() / "logs" / "bindex.log"

BINDEX_THEME = Theme({
    "bindex.address": "cyan",
    "bindex.amount": "bold white",
    "bindex.event": "bold magenta",
    "bindex.tick": "bold yellow",
    "bindex.logger_name": "magenta",
    "bindex.timestamp": "dim cyan",
    "bindex.level_debug": "dim",
    "bindex.level_info": "green",
    "bindex.level_warning": "bold yellow",
    "bindex.level_error": "bold red",
    "bindex.level_critical": "bold red reverse",
})


class BindexLogHighlighter(RegexHighlighter):
    """Highlights exchange log lines."""

    base_style = "bindex."
    highlights = [
        r"(?P<address>\b0x[0-9a-fA-F]{40}\b)",
        r"(?P<tick>\btick[= ]-?\d+\b)",
        r"(?P<amount>\b(?:in|out|amount(?:_[ab])?)=\d+\b)",
        r"(?P<event>\b(?:PoolCreated|AddLiquidity|RemoveLiquidity|Swap|MigrateBinsUpStack)\b)",
        r"(?P<timestamp>^\S+ UTC)",
        r"(?P<level_debug>\bDEBUG\b)",
        r"(?P<level_info>\bINFO\b)",
        r"(?P<level_warning>\bWARNING\b)",
        r"(?P<level_error>\bERROR\b)",
        r"(?P<level_critical>\bCRITICAL\b)",
        r"- (?P<logger_name>bindex[\w.]*) -",
    ]


class TerminalSafeFormatter(logging.Formatter):
    """Formatter that drops ANSI escapes and control characters from the output."""

    _unsafe_re = re.compile(
        r"\x1b\[[0-?]*[ -/]*[@-~]"      # CSI sequences
        r"|\x1b[@-Z\\-_]"               # bare ESC sequences
        r"|[\x00-\x08\x0B-\x1F\x7F]"    # control chars except tab / newline
    )

    @classmethod
    def sanitize(cls, text: str) -> str:
        return cls._unsafe_re.sub("", text) if text else text

    def format(self, record: logging.LogRecord) -> str:
        return self.sanitize(super().format(record))


def _warn(message: str) -> None:
    # Logging is not up yet, so report on stderr
    print(f"{time.strftime('%Y-%m-%dT%H:%M:%S')} - bindex.logger - {message}", file=sys.stderr)


class LogManager:
    """
    Singleton owner of the root logger configuration.

    ``configure`` runs once per process; later calls are no-ops until
    ``reset`` is called.
    """

    _instance: Optional["LogManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "LogManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    instance = super().__new__(cls)
                    instance._configured = False
                    instance._handlers = []
                    cls._instance = instance
        return cls._instance

    @property
    def is_configured(self) -> bool:
        return self._configured

    # -- Settings -------------------------------------------------------------

    @staticmethod
    def resolve_format(log_format: Optional[str]) -> str:
        """``log_format`` if it renders a record cleanly, otherwise the default."""
        default = str(LOG_FORMAT.default())
        if not log_format:
            return default
        record = logging.LogRecord("bindex", logging.INFO, "", 0, "format check", (), None)
        try:
            rendered = logging.Formatter(fmt=str(log_format)).format(record)
        except (ValueError, KeyError, TypeError) as e:
            _warn(f"Invalid LOG_FORMAT ({e}); using default")
            return default
        if re.search(r"%\([a-zA-Z_]\w*\)", rendered):
            _warn("LOG_FORMAT left placeholders unrendered; using default")
            return default
        return str(log_format)

    @staticmethod
    def resolve_date_format(date_format: Optional[str]) -> str:
        """``date_format`` if strftime accepts it, otherwise the default."""
        default = str(LOG_DATE_FORMAT.default())
        if not date_format or "%" not in str(date_format):
            return default
        try:
            time.strftime(str(date_format), time.gmtime(0))
        except ValueError as e:
            _warn(f"Invalid LOG_DATE_FORMAT ({e}); using default")
            return default
        return str(date_format)

    # -- Handlers -------------------------------------------------------------

    @staticmethod
    def _console_handler(formatter: logging.Formatter, highlight: bool) -> logging.Handler:
        if not highlight:
            handler = logging.StreamHandler(sys.stdout)
        else:
            handler = RichHandler(
                console=Console(theme=BINDEX_THEME, highlight=False),
                highlighter=BindexLogHighlighter(),
                keywords=[],
                rich_tracebacks=True,
                show_path=False,
                show_time=False,
                show_level=False,
                markup=False,
            )
        handler.setFormatter(formatter)
        return handler

    @staticmethod
    def _file_handler(formatter: logging.Formatter, path: Path) -> logging.Handler:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            filename=str(path),
            maxBytes=LOG_MAX_FILE_SIZE,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        return handler

    # -- Lifecycle ------------------------------------------------------------

    def configure(
        self,
        log_level: Optional[str] = None,
        log_file: Optional[Path] = None,
        console_output: bool = True,
        file_output: Optional[bool] = None,
    ) -> None:
        """
        Attach bindex handlers to the root logger.

        Args:
            log_level: level name; defaults to ``LOG_LEVEL``
            log_file: rotating file path; defaults to ``./logs/bindex.log``
            console_output: attach the console handler
            file_output: attach the file handler; defaults to ``LOG_FILE_OUTPUT``
        """
        with self._lock:
            if self._configured:
                return

            level = getattr(logging, str(log_level or LOG_LEVEL).upper(), logging.INFO)
            formatter = TerminalSafeFormatter(
                fmt=self.resolve_format(LOG_FORMAT),
                datefmt=self.resolve_date_format(LOG_DATE_FORMAT) + " UTC",
            )
            formatter.converter = time.gmtime

            handlers: List[logging.Handler] = []
            if console_output:
                handlers.append(self._console_handler(formatter, bool(LOG_CONSOLE_HIGHLIGHTING)))
            if LOG_FILE_OUTPUT if file_output is None else file_output:
                handlers.append(self._file_handler(formatter, log_file or LOG_FILE_PATH))

            root = logging.getLogger()
            root.setLevel(level)
            for handler in handlers:
                handler.setLevel(level)
                root.addHandler(handler)
            self._handlers = handlers
            self._configured = True

    def reset(self) -> None:
        """Detach the handlers added by ``configure``."""
        with self._lock:
            root = logging.getLogger()
            for handler in self._handlers:
                root.removeHandler(handler)
                handler.close()
            self._handlers = []
            self._configured = False

    def get_logger(self, name: str) -> logging.Logger:
        if not self._configured:
            self.configure()
        return logging.getLogger(name)


_manager = LogManager()


def get_logger(name: str) -> logging.Logger:
    """Module logger with the bindex root configuration applied."""
    return _manager.get_logger(name)


_manager.configure()
