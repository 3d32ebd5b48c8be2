import functools
import logging
import os
import time
from typing import Any, Callable, TypeVar

# Default to CRITICAL (effectively off) unless explicitly set for debug
LOG_LEVEL = os.getenv("MALSIM_LOG_LEVEL", "CRITICAL").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.CRITICAL))

F = TypeVar("F", bound=Callable[..., Any])

_SCALARS = (bool, int, float, str)


def _summarize(value: Any) -> str:
    """Short form of an argument: scalars as-is, everything else by type."""
    if value is None or isinstance(value, _SCALARS):
        text = repr(value)
        return text if len(text) <= 40 else text[:37] + "..."
    if isinstance(value, (list, tuple, dict)):
        return f"<{type(value).__name__} len={len(value)}>"
    return f"<{type(value).__name__}>"


def log_call(func: F) -> F:
    """Decorator that logs function entry, exit and runtime at DEBUG level."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger = logging.getLogger(func.__module__)
        if not logger.isEnabledFor(logging.DEBUG):
            return func(*args, **kwargs)
        logger.debug("Entering %s args=%s kwargs=%s", func.__qualname__,
                     [_summarize(a) for a in args],
                     {k: _summarize(v) for k, v in kwargs.items()})
        start = time.perf_counter()
        result = func(*args, **kwargs)
        runtime_ms = (time.perf_counter() - start) * 1000
        logger.debug("Exiting %s return=%s (%.2fms)", func.__qualname__,
                     _summarize(result), runtime_ms)
        return result

    return wrapper  # type: ignore[return-value]
