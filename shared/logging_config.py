"""Structured JSON logging configuration for FieldSync."""

from __future__ import annotations

import logging

from pythonjsonlogger import json as jsonlogger

from shared.log import ROOT_LOGGER_NAME, TRACE


def configure_logging(log_level: str, json_output: bool = True) -> None:
    """Configure the FieldSync logger.

    JSON output format: {"ts": "...", "level": "...", "name": "...", "msg": "..."}

    Args:
        log_level: Logging level string (e.g., "info", "debug", "trace").
        json_output: Emit structured JSON lines; plain text when False.
    """
    if log_level.lower() == "trace":
        level = TRACE
    else:
        level = getattr(logging, log_level.upper(), logging.INFO)

    if json_output:
        formatter = jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={
                "asctime": "ts",
                "levelname": "level",
                "message": "msg",
            },
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    # Clear any existing handlers to avoid duplicate output
    logger.handlers.clear()
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
