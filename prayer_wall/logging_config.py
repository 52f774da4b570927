"""
Logging setup for Prayer Wall processes.

Application logs go to the console. Audit events emitted on the
"prayer_wall.events" logger are additionally written, one JSON object per
line, to the event log file (logs/events.jsonl under the data directory by
default).
"""

import logging
import sys
from pathlib import Path
from typing import Optional

from prayer_wall.config import get_event_log_path

EVENT_LOGGER_NAME = "prayer_wall.events"


def setup_logging(level: int = logging.INFO, event_log_path: Optional[Path] = None) -> None:
    """
    Configure root logging and the JSON-lines event log.

    Safe to call more than once: existing handlers are replaced.

    Args:
        level: Console log level
        event_log_path: Override for the configured event log file
    """
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s - %(name)s:%(funcName)s:%(lineno)d - %(message)s"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    if root_logger.handlers:
        root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Event lines are already JSON; write them verbatim
    event_logger = logging.getLogger(EVENT_LOGGER_NAME)
    event_logger.setLevel(logging.INFO)
    for handler in list(event_logger.handlers):
        event_logger.removeHandler(handler)
        handler.close()

    log_file = Path(event_log_path) if event_log_path else get_event_log_path()
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter("%(message)s"))
    event_logger.addHandler(file_handler)

    # Google client libraries are noisy at INFO
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("google.auth").setLevel(logging.WARNING)
