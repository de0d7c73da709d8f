"""
Event loop error policy.

An exception nobody awaited (a crashed background task, a failing
callback) ends up in the loop's exception handler. Outside production the
process exits so the problem is impossible to miss; in production the
gateway keeps serving and the error is logged at CRITICAL.

The handler can run from ``Task.__del__``, where a raised SystemExit is
only reported as "Exception ignored", so the exit bypasses exception
propagation entirely.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Callable

from lovculator_shared.config.logging import get_logger
from lovculator_shared.config.settings import settings

logger = get_logger(__name__)

ExceptionHandler = Callable[[asyncio.AbstractEventLoop, dict[str, Any]], None]


def install_fatal_error_handler(
    loop: asyncio.AbstractEventLoop,
    environment: str | None = None,
    exit_process: Callable[[int], Any] = os._exit,
) -> ExceptionHandler:
    """
    Install the gateway's exception handler on ``loop``.

    Args:
        loop: Event loop to install the handler on.
        environment: Deployment environment (defaults to settings).
        exit_process: Called with the exit status outside production.

    Returns:
        The installed handler.
    """
    env = environment or settings.environment
    exit_on_error = env != "production"

    def handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        logger.critical(
            "Unhandled error in event loop",
            message=context.get("message"),
            error=str(exc) if exc else None,
            error_type=type(exc).__name__ if exc else None,
            environment=env,
            exc_info=exc,
        )
        if exit_on_error:
            # The hard exit skips interpreter cleanup, flush logs first
            for handler in logging.getLogger().handlers:
                handler.flush()
            exit_process(1)

    loop.set_exception_handler(handle_loop_exception)
    return handle_loop_exception
