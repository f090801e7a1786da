"""Fast wall-clock readings in integer nanoseconds."""

import time


def now() -> int:
    """Return the current wall-clock time as nanoseconds since the Unix epoch.

    Only differences between readings are meaningful to callers.
    """
    return time.time_ns()