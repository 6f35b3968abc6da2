"""
Component logging helpers.

FieldSync modules log through the standard library under the ``FieldSync``
logger namespace. This module provides a factory that returns one function
per level, bound to a component logger, so every module logs the same way:

Usage:
    from shared.log import create_logger
    log_trace, log_debug, log_info, log_warn, log_error = create_logger("Engine")
    log_info("Drained 3 operations")  # -> logger "FieldSync.Engine", INFO
"""

import logging

# Finer than DEBUG, used for per-operation chatter
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER_NAME = "FieldSync"


def create_logger(component: str = ""):
    """Create log functions for a component.

    Args:
        component: Component name suffix. If provided, the logger becomes
                   "FieldSync.{component}", otherwise "FieldSync".

    Returns:
        Tuple of (log_trace, log_debug, log_info, log_warn, log_error) functions.
    """
    name = f"{ROOT_LOGGER_NAME}.{component}" if component else ROOT_LOGGER_NAME
    logger = logging.getLogger(name)

    def log_trace(msg): logger.log(TRACE, msg)
    def log_debug(msg): logger.debug(msg)
    def log_info(msg): logger.info(msg)
    def log_warn(msg): logger.warning(msg)
    def log_error(msg): logger.error(msg)

    return log_trace, log_debug, log_info, log_warn, log_error
