"""Logging configuration for ServerWrecker.

Installs two handlers on the root logger:

1. **Console** -- :class:`SafeStreamHandler`, which never lets an
   unencodable character (bot names from account lists can contain
   anything) crash a log call.
2. **File** -- :class:`CompressedRotatingFileHandler` writing to
   ``logs/serverwrecker.log`` with gzip rotation (10 MiB per file,
   5 backups).

The level can be changed while a swarm is running with
:func:`set_log_level`; the CLI ``--debug`` flag uses it.

Usage::

    from core.logging_setup import setup_logging, set_log_level
    setup_logging("INFO")
    set_log_level("DEBUG")
"""

import gzip
import logging
import os
import shutil
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s - %(message)s'
DEFAULT_LOG_FILE = os.path.join("logs", "serverwrecker.log")


class CompressedRotatingFileHandler(RotatingFileHandler):
    """RotatingFileHandler that gzip-compresses rotated log files."""

    def rotation_filename(self, default_name: str) -> str:
        return f"{default_name}.gz"

    def rotate(self, source: str, dest: str) -> None:
        """Compress *source* into *dest* and remove *source*."""
        with open(source, 'rb') as f_in:
            with gzip.open(dest, 'wb') as f_out:
                shutil.copyfileobj(f_in, f_out)
        os.remove(source)


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that degrades unencodable text instead of failing.

    If the console encoding cannot represent a message, the message is
    re-encoded with the stream's own encoding using replacement
    characters.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            stream = self.stream
            try:
                stream.write(msg + self.terminator)
            except UnicodeEncodeError:
                encoding = getattr(stream, "encoding", None) or "ascii"
                safe_msg = msg.encode(
                    encoding, errors='replace',
                ).decode(encoding)
                stream.write(safe_msg + self.terminator)
            self.flush()
        except Exception:
            self.handleError(record)


def _resolve_level(log_level: str) -> int:
    return getattr(logging, str(log_level).upper(), logging.INFO)


def setup_logging(
    log_level: str = "INFO", log_file: Optional[str] = DEFAULT_LOG_FILE,
) -> None:
    """Configure the root logger with console and file handlers.

    Calling it again replaces the handlers installed by the previous call.

    Args:
        log_level: Logging level name (e.g. ``"DEBUG"``, ``"INFO"``).
        log_file: Path of the rotating log file; ``None`` logs to the
            console only.
    """
    handlers: list = [SafeStreamHandler(sys.stdout)]

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            CompressedRotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8',
            )
        )

    logging.basicConfig(
        level=_resolve_level(log_level),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def set_log_level(log_level: str) -> int:
    """Switch the root logger and its handlers to *log_level*.

    Args:
        log_level: Logging level name; unknown names map to ``INFO``.

    Returns:
        The numeric level that was applied.
    """
    level = _resolve_level(log_level)
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers:
        handler.setLevel(level)
    logging.getLogger(__name__).debug(
        "Log level set to %s", logging.getLevelName(level),
    )
    return level
