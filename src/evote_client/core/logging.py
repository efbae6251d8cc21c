"""Loguru logging for the voting client.

Records carry a ``voter_id`` extra so a single voter's validation and
submission can be followed through the log.  Code handling a voter binds
it with ``voter_logger(voter_id)``; everything else logs with ``-``.

A human-readable sink goes to stderr.  Records bound with
``json_output=True`` go to stderr as JSON instead, and a rotating file
sink is added when ``log_dir`` is set.
"""

import sys
from pathlib import Path

from loguru import logger

NO_VOTER = "-"

_LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<8} | voter={extra[voter_id]} | {name}:{function}:{line} | {message}"
)


def voter_logger(voter_id: str | None):
    """Return the shared logger bound to ``voter_id``."""
    return logger.bind(voter_id=voter_id or NO_VOTER)


def setup_logging(log_level: str = "INFO", log_dir: str | None = None, *, json_output: bool = False) -> None:
    """Configure Loguru sinks for the client.

    Args:
        log_level: Minimum log level to emit.
        log_dir: Optional directory for log files.  When set, a rotating
            file sink is added (rotated every 24 hours, retained 7 days).
        json_output: Send every record to stderr as JSON.
    """
    level = log_level.upper()
    logger.remove()
    logger.configure(extra={"voter_id": NO_VOTER})

    def wants_json(record) -> bool:
        return json_output or record["extra"].get("json_output", False)

    logger.add(sys.stderr, level=level, format=_LOG_FORMAT, filter=lambda record: not wants_json(record))
    logger.add(sys.stderr, level=level, serialize=True, filter=wants_json)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path / "evote-client.log",
            level=level,
            format=_LOG_FORMAT,
            rotation="24h",
            retention="7 days",
        )
