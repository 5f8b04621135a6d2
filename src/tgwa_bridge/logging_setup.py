"""
Logging Setup

Console and file logging for the bridge. The file log backs the /logs
endpoints of the control surface.
"""

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Signal-session dumps the WhatsApp stack prints on every key rotation
SUPPRESS_PATTERNS = (
    "Closing stale open session",
    "Closing session: SessionEntry",
    "SessionEntry",
    "ephemeralKeyPair",
    "privKey: <Buffer",
    "pubKey: <Buffer",
    "currentRatchet",
    "lastRemoteEphemeralKey",
    "rootKey",
    "preKeyId:",
    "chainKey: [Object]",
    "messageKeys: {}",
)


class NoiseFilter(logging.Filter):
    """Drop records whose message contains a suppressed pattern."""

    def __init__(self, patterns=SUPPRESS_PATTERNS):
        super().__init__()
        self.patterns = tuple(patterns)

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except Exception:
            return True
        return not any(p in message for p in self.patterns)


def configure_logging(level: str = "INFO", log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Install console and file handlers on the root logger.

    Args:
        level: Level name (DEBUG, INFO, ...)
        log_file: Append log lines here as well, if given
    """
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    root = logging.getLogger()

    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(file_handler)
        except OSError as e:
            logging.getLogger(__name__).warning(f"Cannot open log file {log_path}: {e}")

    noise = NoiseFilter()
    for handler in root.handlers:
        if not any(isinstance(f, NoiseFilter) for f in handler.filters):
            handler.addFilter(noise)

    # httpx logs every long-poll request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def read_log(log_file: Optional[Union[str, Path]]) -> str:
    """Whole log file, or an empty string if there is none."""
    if not log_file:
        return ""
    path = Path(log_file)
    if not path.exists():
        return ""
    return path.read_text(encoding="utf-8", errors="replace")


def read_log_tail(log_file: Optional[Union[str, Path]], lines: int = 200) -> str:
    """Last N non-empty lines of the log file."""
    if lines <= 0:
        return ""
    entries = [line for line in read_log(log_file).strip().split("\n") if line]
    return "\n".join(entries[-lines:])
