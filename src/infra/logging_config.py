"""
Logging configuration module.

Daily log rotation with process start time tracking.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

# Process start time is captured once and reused for all daily logs
_PROCESS_START_TIME: Optional[str] = None

LOG_FILE_PREFIX = "job_scheduler"
LOGGER_NAME = "src"


class DailyRotatingFileHandler(logging.FileHandler):
    """
    Daily rotating file handler.

    Creates one log file per calendar day with format:
    logs/job_scheduler_YYYYMMDD_<START_HHMMSS>.log

    START_HHMMSS is fixed at process start, only YYYYMMDD changes.
    """

    def __init__(self, log_dir: str = "logs", encoding: str = "utf-8"):
        global _PROCESS_START_TIME

        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Capture process start time once
        if _PROCESS_START_TIME is None:
            _PROCESS_START_TIME = datetime.now().strftime("%H%M%S")

        self._start_hhmmss = _PROCESS_START_TIME
        self._current_date: Optional[str] = None
        self._encoding = encoding

        initial_path = self._get_current_log_path()
        super().__init__(initial_path, mode='a', encoding=encoding)
        self._current_date = datetime.now().strftime("%Y%m%d")

    def _get_current_log_path(self) -> str:
        """Get log file path for current date."""
        date_str = datetime.now().strftime("%Y%m%d")
        return str(self.log_dir / f"{LOG_FILE_PREFIX}_{date_str}_{self._start_hhmmss}.log")

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a record, rotating to new file if date changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            self.close()

            self.baseFilename = self._get_current_log_path()
            self._current_date = current_date
            self.stream = self._open()

        super().emit(record)


def setup_logging(log_level: str = "INFO", log_dir: str = "logs") -> logging.Logger:
    """
    Configure logging for every module under the `src` package.

    Format: logs/job_scheduler_YYYYMMDD_<START_HHMMSS>.log

    Args:
        log_level (str): Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir (str): Directory for daily log files

    Returns:
        logging.Logger: Configured package logger
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Remove existing handlers (prevent duplicates)
    if logger.handlers:
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    console_handler = logging.StreamHandler()
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    file_handler = DailyRotatingFileHandler(log_dir=log_dir, encoding='utf-8')
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    logger.info(f"Logging started - level: {log_level}, log file: {file_handler.baseFilename}")

    return logger
