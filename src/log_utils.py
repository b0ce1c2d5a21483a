"""
Logging utilities for the Pantheon Fleet Updater.
"""

import logging
import sys

UPDATE_LOG_FILE = "fleet-update.log"
REPORT_LOG_FILE = "fleet-update-report.log"


def log_file_for(report_only: bool) -> str:
    """Report-only runs log to their own file."""
    return REPORT_LOG_FILE if report_only else UPDATE_LOG_FILE


def setup_logging(verbose: bool = False, log_file: str = UPDATE_LOG_FILE) -> logging.Logger:
    """
    Set up logging configuration.

    Args:
        verbose: Enable verbose (DEBUG) logging
        log_file: Path to log file

    Returns:
        Logger instance
    """
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file),
        ],
    )

    # urllib3 logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.INFO if verbose else logging.WARNING)

    return logging.getLogger(__name__)
