"""Helper functions for find-malloc"""

import logging
import os


def set_verbosity(verbosity: int):
    """Set global logging level

    -1: logging.ERROR
    0 (default): logging.WARNING
    1: logging.INFO
    2: logging.DEBUG
    """
    loglevels = [logging.ERROR, logging.WARNING, logging.INFO, logging.DEBUG]
    verbosity = max(-1, min(verbosity, 2))
    logging.basicConfig(level=loglevels[verbosity + 1],
                        format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger().setLevel(loglevels[verbosity + 1])


def get_logger(path: str) -> logging.Logger:
    """Return the logger retrieved by logging.getLogger with the basename of path"""
    return logging.getLogger(os.path.splitext(os.path.basename(path))[0])
