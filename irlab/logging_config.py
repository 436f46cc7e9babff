"""Logging configuration with console and rotating file handlers"""
import glob
import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


def setup_logging(
    log_file: Optional[str] = "logs/ir-lab.log",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
    keep_sessions: int = 5,
):
    """
    Configure logging with two destinations:
    - Console: Brief logs (INFO by default)
    - File: Detailed logs (DEBUG by default) with rotation

    Rotation policy:
    - New log file on each process start (timestamp-based naming)
    - Keep last `keep_sessions` log files (auto-cleanup on startup)
    - Auto-rotate when file reaches 10MB

    Args:
        log_file: Base path to log file, or None for console-only logging (CLI)
        console_level: Console logging level (INFO = brief)
        file_level: File logging level (DEBUG = verbose)
        keep_sessions: Number of session log files to retain
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture everything, filter in handlers
    root_logger.handlers.clear()

    # Console handler - brief output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
    root_logger.addHandler(console_handler)

    session_log = None
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Cleanup old session logs - newest first, keep room for the new one
        log_pattern = str(log_path.parent / f"{log_path.stem}_*.log")
        existing_logs = sorted(glob.glob(log_pattern), reverse=True)
        for old_log in existing_logs[max(keep_sessions - 1, 0):]:
            try:
                Path(old_log).unlink()
            except OSError:
                logging.getLogger(__name__).debug(f"Could not remove old log file {old_log}")

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        session_log = log_path.parent / f"{log_path.stem}_{timestamp}.log"

        # Rotating file handler - detailed output
        file_handler = RotatingFileHandler(
            session_log,
            mode='a',
            maxBytes=10*1024*1024,  # 10MB
            backupCount=10,
            encoding='utf-8'
        )
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

    # PDF extraction libraries are chatty at DEBUG
    logging.getLogger("pymupdf").setLevel(logging.WARNING)
    logging.getLogger("fitz").setLevel(logging.WARNING)

    if session_log:
        logging.info(f"Logging configured: console={logging.getLevelName(console_level)}, file={session_log} ({logging.getLevelName(file_level)})")
    else:
        logging.debug(f"Logging configured: console={logging.getLevelName(console_level)}, no log file")
