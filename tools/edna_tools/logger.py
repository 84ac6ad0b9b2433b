"""
Logging helpers shared by the edna_tools modules and driver scripts.
"""

import logging

LOGGER_NAME = 'edna_tools'


def setup_logger(log_file=None, log_level=logging.INFO):
    """Set up the package logger with a console and optional file handler."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(log_level)

    # Drop handlers from a previous call so messages are not duplicated
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Create formatter
    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Create console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Create file handler if log_file specified
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_print(message, level="info"):
    """Log a message on the package logger at the named level."""
    logger = logging.getLogger(LOGGER_NAME)
    getattr(logger, level)(message)
