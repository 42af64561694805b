import logging
from pathlib import Path
from logging.handlers import RotatingFileHandler
from tt.common.setup import PATHS

LOG_FORMAT = "%(asctime)s %(levelname)s [%(filename)s:%(lineno)d] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# The logger itself always passes everything through, handler levels decide what actually gets written.
def get_logger(name="tasktimer", log_dir: Path | None = None, max_bytes=2 * 1024 * 1024, backup_count=3):
    logger = logging.getLogger(name)
    logger.propagate = False
    logger.setLevel(logging.DEBUG)

    file_handler_name = f"{name}:file"
    if not any(h.get_name() == file_handler_name for h in logger.handlers):
        log_dir = log_dir or PATHS.logs
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=log_dir / f"{name}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
            delay=True,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        file_handler.set_name(file_handler_name)
        logger.addHandler(file_handler)
    return logger

# Applies the "log_level" and "log_console" settings to an already built logger. An unknown level name falls back
# to INFO. Returns the level that ended up applied.
def configure_logging(settings, logger=None):
    logger = logger or log
    level_name = str(settings.get("log_level") or "INFO").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        logger.warning(f"Unknown log_level '{level_name}' in settings, logging at INFO instead.")
        level = logging.INFO

    for handler in logger.handlers:
        if handler.get_name() == f"{logger.name}:file":
            handler.setLevel(level)

    console_handler_name = f"{logger.name}:console"
    console_handler = next((h for h in logger.handlers if h.get_name() == console_handler_name), None)
    if settings.get("log_console") and console_handler is None:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        console_handler.set_name(console_handler_name)
        logger.addHandler(console_handler)
    elif not settings.get("log_console") and console_handler is not None:
        logger.removeHandler(console_handler)
        console_handler.close()
    if console_handler is not None and settings.get("log_console"):
        console_handler.setLevel(level)

    logger.debug(f"Logging at {logging.getLevelName(level)}, console {'on' if settings.get('log_console') else 'off'}")
    return level

log = get_logger()
