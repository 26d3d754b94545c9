# Logging_Config.py
# Description: Configuration for logging
#
# Imports
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Dict, Optional
#
# 3rd-Party Imports
from loguru import logger as loguru_logger
#
# Local Imports
from birchvault.config import get_log_file_path, get_setting
#
########################################################################################################################
#
# Functions:

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s:%(lineno)d - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGURU_LEVEL_MAPPING = {
    "TRACE": logging.DEBUG, "DEBUG": logging.DEBUG, "INFO": logging.INFO,
    "SUCCESS": logging.INFO, "WARNING": logging.WARNING, "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


def sink_to_standard_logging(message):
    """Loguru sink that re-emits each record through the stdlib logger of the same name."""
    record = message.record
    std_level = _LOGURU_LEVEL_MAPPING.get(record["level"].name, logging.INFO)
    std_logger = logging.getLogger(record["name"])
    if record["exception"]:
        std_logger.log(std_level, record["message"], exc_info=record["exception"])
    else:
        std_logger.log(std_level, record["message"])


def configure_logging(settings: Dict[str, Any], log_file: Optional[Path] = None,
                      console: bool = True) -> Optional[Path]:
    """
    Routes loguru into stdlib logging and installs the root handlers.

    Returns the log file path, or None if the file handler could not be set up.
    """
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    loguru_logger.remove()
    loguru_logger.add(sink_to_standard_logging, level="TRACE", format="{message}")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    log_level_str = str(get_setting("logging", "log_level", "INFO", settings)).upper()
    log_level = getattr(logging, log_level_str, logging.INFO)
    root_logger.setLevel(log_level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    log_file_path = log_file or get_log_file_path(settings)
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        max_bytes = int(get_setting("logging", "log_max_bytes", 10485760, settings))
        backup_count = int(get_setting("logging", "log_backup_count", 5, settings))
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
    except (OSError, ValueError) as e:
        logging.error(f"Failed to set up file logging at {log_file_path}: {e}", exc_info=True)
        return None

    logging.info(f"Logging configured. Level: {logging.getLevelName(log_level)}, file: {log_file_path}")
    return log_file_path

#
# End of Logging_Config.py
#######################################################################################################################
