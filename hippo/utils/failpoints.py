"""Hippo Transcribe - Failpoint injection for crash-resume testing.

Provides deterministic crash injection at the points where the pipeline
crosses from one durable store to another (blob written but ledger not yet
marked, artifact written but job not yet completed, ...).

Safety gate: Failpoints are only active when HIPPO_ENABLE_FAILPOINTS=1.
The default is a complete no-op.

Environment variables:
- HIPPO_ENABLE_FAILPOINTS: Set to "1" to enable the failpoint system
- HIPPO_FAILPOINT: Name of the failpoint to trigger (e.g., "UPLOAD_AFTER_PUT")
- HIPPO_FAILPOINT_EXIT_CODE: Exit code to use when crashing (default: 42)
- HIPPO_FAILPOINT_ONCE: Set to "1" to only trigger once in this process

Usage:
    from hippo.utils.failpoints import maybe_fail

    maybe_fail("WORKER_AFTER_ARTIFACT_WRITE")
"""

from __future__ import annotations

import os

_PREFIX = "FAILPOINT_"


def _normalize(name: str) -> str:
    name = name.upper()
    if name.startswith(_PREFIX):
        name = name[len(_PREFIX) :]
    return name


def maybe_fail(point: str) -> None:
    """Crash the process with os._exit() if the named failpoint is active.

    os._exit() skips finally blocks and atexit handlers, so the crash looks
    like a power loss to whatever was in flight.

    Args:
        point: The failpoint name to check (with or without "FAILPOINT_" prefix).
    """
    if os.environ.get("HIPPO_ENABLE_FAILPOINTS") != "1":
        return

    target = os.environ.get("HIPPO_FAILPOINT", "")
    if not target or _normalize(point) != _normalize(target):
        return

    try:
        exit_code = int(os.environ.get("HIPPO_FAILPOINT_EXIT_CODE", "42"))
    except ValueError:
        exit_code = 42

    if os.environ.get("HIPPO_FAILPOINT_ONCE") == "1":
        os.environ.pop("HIPPO_FAILPOINT", None)
        os.environ.pop("HIPPO_FAILPOINT_ONCE", None)

    os._exit(exit_code)


def is_failpoint_enabled() -> bool:
    """Check if the failpoint system is enabled."""
    return os.environ.get("HIPPO_ENABLE_FAILPOINTS") == "1"


def get_active_failpoint() -> str | None:
    """Get the currently active failpoint name (without prefix), if any."""
    if not is_failpoint_enabled():
        return None
    target = os.environ.get("HIPPO_FAILPOINT", "")
    if not target:
        return None
    return _normalize(target)
