"""Logging for the MIRÓ sheets service: one "miro" tree shared by reader, writers and handler."""

import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_FILE = os.environ.get("MIRO_LOG_FILE", "miro_sheets.log")


def setup_logging(level=logging.INFO):
    """Attach console and ``MIRO_LOG_FILE`` handlers to the "miro" logger once.

    Later calls only update the level, so ``server.main`` and tests may call it freely.
    """
    root_logger = logging.getLogger("miro")
    root_logger.setLevel(level)

    if root_logger.handlers:
        return root_logger

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    file_handler = logging.FileHandler(LOG_FILE, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name):
    """Return ``miro.<name>``, e.g. ``get_logger("reader")`` for the workbook reader."""
    return logging.getLogger(f"miro.{name}")
