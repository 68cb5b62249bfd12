"""
Exit code definitions for graceful server shutdown.

Provides the exit codes that process managers and monitoring systems
can interpret to understand how the server shutdown ended.
"""

import enum


class ShutdownExitCode(enum.IntEnum):
    """Exit codes for the shutdown outcomes.

    Only two outcomes are observable: the sequence either completed (or was
    skipped in development mode) or the forced timeout expired first.
    """

    GRACEFUL = 0  # Listener closed after cleanup, or development fast path
    FORCED = 1  # Forced-shutdown timeout expired


def get_exit_code_description(code: ShutdownExitCode) -> str:
    """Get human-readable description of exit code."""
    descriptions = {
        ShutdownExitCode.GRACEFUL: "Server shutdown gracefully",
        ShutdownExitCode.FORCED: "Could not close connections in time, forcefully shut down",
    }
    return descriptions.get(code, f"Unknown exit code: {code}")
