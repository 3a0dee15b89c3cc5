import logging
from typing import Optional


_configured = False
_NOISY_LOGGERS = ("httpx", "httpcore", "apscheduler.executors.default")


def configure_logging(level: Optional[str] = None) -> None:
    global _configured
    if _configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or "INFO").upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )
    # Per-request client logs drown out lifecycle transitions.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
