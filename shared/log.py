"""
Component logging for the queue server.

Every module that runs inside the gateway or a worker process logs through a
component logger, so records carry a stable logger name that the JSON
formatter (see gateway/logging_config.py) can emit and operators can filter on.

This module provides a factory to create log functions with a component prefix,
eliminating the need to set up a logger in every module.

Usage:
    from shared.log import create_logger
    log_trace, log_debug, log_info, log_warn, log_error = create_logger("Worker")
    log_info("Processing job 42")  # -> logger "feedback_queue.worker"
"""

import logging

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

ROOT_LOGGER_NAME = "feedback_queue"


def get_component_logger(component: str = "") -> logging.Logger:
    """Return the stdlib logger used for a component."""
    if not component:
        return logging.getLogger(ROOT_LOGGER_NAME)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.lower()}")


def create_logger(component: str = ""):
    """Create log functions for a component.

    Args:
        component: Component name suffix. If provided, messages go to
                   "feedback_queue.{component}", otherwise "feedback_queue".

    Returns:
        Tuple of (log_trace, log_debug, log_info, log_warn, log_error) functions.
    """
    logger = get_component_logger(component)

    def log_trace(msg): logger.log(TRACE, msg)
    def log_debug(msg): logger.debug(msg)
    def log_info(msg): logger.info(msg)
    def log_warn(msg): logger.warning(msg)
    def log_error(msg): logger.error(msg)

    return log_trace, log_debug, log_info, log_warn, log_error
