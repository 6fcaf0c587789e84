from __future__ import annotations
import logging, sys
from .config import Config

LOGGER_NAME = "azbuildhost"

def init_logging(cfg: Config) -> logging.Logger:
    logger = logging.getLogger(LOGGER_NAME)
    # CLI entrypoints may run more than once per process (tests, wrappers)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    level = getattr(logging, cfg.log_level.upper(), logging.INFO)
    logger.setLevel(level)
    logger.propagate = False

    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    if cfg.log_console:
        ch = logging.StreamHandler(sys.stderr)
        ch.setFormatter(fmt)
        ch.setLevel(level)
        logger.addHandler(ch)
    if cfg.log_file:
        try:
            fh = logging.FileHandler(cfg.log_file, encoding="utf-8")
            fh.setFormatter(fmt)
            fh.setLevel(level)
            logger.addHandler(fh)
        except OSError as e:
            logger.warning("Failed to open log file %s: %s", cfg.log_file, e)
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())
    logger.debug("Logging initialized (level=%s, file=%s, console=%s, dry_run=%s)",
                 cfg.log_level, cfg.log_file, cfg.log_console, cfg.dry_run)
    return logger

def log_event(cfg: Config, level: int, msg: str):
    logger = logging.getLogger(LOGGER_NAME)
    if cfg.dry_run:
        msg = f"[dry-run] {msg}"
    logger.log(level, msg)
