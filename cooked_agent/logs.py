import json
import logging
from typing import Any

from cooked_agent import config

_ROOT = "cooked_agent"


def _configure_root() -> logging.Logger:
    logger = logging.getLogger(_ROOT)
    # Ensure our application logger emits under Uvicorn:
    # - honor LOG_LEVEL env (default INFO)
    # - attach a StreamHandler if none present
    # - disable propagate to avoid duplicate logs with Uvicorn root handlers
    lvl = getattr(logging, config.LOG_LEVEL, logging.INFO)
    if not isinstance(lvl, int):
        lvl = logging.INFO
    logger.setLevel(lvl)
    if not logger.handlers:
        h = logging.StreamHandler()
        h.setLevel(lvl)
        h.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(h)
    logger.propagate = False
    return logger


_configure_root()


def get_logger(name: str) -> logging.Logger:
    if name == _ROOT or name.startswith(_ROOT + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT}.{name}")


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **fields: Any) -> None:
    """Emit a one-line JSON event. Never raises."""
    try:
        payload = {"event": event}
        payload.update(fields)
        logger.log(level, json.dumps(payload, default=str))
    except Exception:
        pass
