import logging
from typing import Optional


def setup_logging(level: Optional[str] = "INFO") -> None:
    """Attach a console handler to the root logger once.

    Repeated calls (tests, reloads) leave an already configured root logger
    untouched.
    """
    logger = logging.getLogger()
    if logger.handlers:
        return
    logger.setLevel(getattr(logging, (level or "INFO").upper(), logging.INFO))
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
