import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Attributes passed through ``extra=`` that end up as top-level JSON keys
CONTEXT_FIELDS = ("item_id", "rater_id", "worker_id", "event_id")

_MAX_BYTES = 10 * 1024 * 1024   # 10 MB
_BACKUP_COUNT = 5
_CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Environment variable naming an alternate config file
CONFIG_ENV_VAR = "AESTHETIC_RANK_CONFIG"

_log_dir: Optional[Path] = None


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, with any ranking context attached to the record.
    """
    def format(self, record):
        entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "funcName": record.funcName,
            "line": record.lineno,
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _resolve_log_dir() -> Path:
    """paths.logs_dir from the active config file, else ./logs. Resolved once."""
    global _log_dir
    if _log_dir is not None:
        return _log_dir

    # common.config imports this module, so the config file is read directly here
    log_path = Path("logs")
    config_file = Path(os.environ.get(CONFIG_ENV_VAR, "config.json"))
    if config_file.exists():
        try:
            with open(config_file, "r") as fh:
                configured = json.load(fh).get("paths", {}).get("logs_dir")
            if configured:
                log_path = Path(configured)
        except (OSError, ValueError):
            log_path = Path("logs")

    try:
        log_path.mkdir(parents=True, exist_ok=True)
    except OSError:
        log_path = Path("logs")
        log_path.mkdir(parents=True, exist_ok=True)

    _log_dir = log_path
    return _log_dir


def setup_logger(
    name: str,
    log_dir: Optional[str] = None,
    level: int = logging.INFO,
    console_output: bool = True,
) -> logging.Logger:
    """
    Configures *name* with a rotating JSONL file handler and, optionally,
    a human-readable console handler. Calling it again returns the same
    logger untouched.

    Args:
        name: Logger name; also the log file stem
        log_dir: Directory for log files (defaults to paths.logs_dir)
        level: Logging level
        console_output: Whether to also log to stdout
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.handlers:
        return logger

    log_path = Path(log_dir) if log_dir else _resolve_log_dir()
    log_path.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path / f"{name}.jsonl",
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
    )
    file_handler.setFormatter(JsonFormatter())
    logger.addHandler(file_handler)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
        logger.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    return setup_logger(name)
