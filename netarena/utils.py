"""Shared utilities for netarena.

This module provides common functionality used by the coordinator and workers.
"""

import signal
import sys
from typing import Callable


def install_shutdown_handler(stop_fn: Callable[[], None], exit_process: bool = True) -> None:
    """Install signal handlers for graceful shutdown.

    Sets up handlers for SIGINT (Ctrl+C) and SIGTERM that call the provided
    stop function and, optionally, exit cleanly.

    Args:
        stop_fn: Function to call when shutdown signal is received.
                 Should handle cleanup and stop any running processes.
        exit_process: Exit right after stop_fn. Pass False when stop_fn only
                 signals a loop that winds down on its own.
    """
    def handle_signal(_signum: int, _frame) -> None:
        """Handle shutdown signals."""
        stop_fn()
        if exit_process:
            sys.exit(0)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)
