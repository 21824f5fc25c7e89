import functools
import logging
import os
import time
from typing import Any, Callable, TypeVar

# Default to CRITICAL (effectively off) unless explicitly set for debug
LOG_LEVEL = os.getenv("APP_LOG_LEVEL", "CRITICAL").upper()
LOG_FORMAT = os.getenv("APP_LOG_FORMAT", logging.BASIC_FORMAT)
logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.CRITICAL),
                    format=LOG_FORMAT)

F = TypeVar("F", bound=Callable[..., Any])

_MAX_REPR = 80


def _summarize(value: Any) -> str:
    """Short description of an argument; arrays are reduced to their shape."""
    shape = getattr(value, "shape", None)
    if shape is not None:
        return f"<{type(value).__name__} shape={shape}>"
    text = repr(value)
    if len(text) > _MAX_REPR:
        return text[:_MAX_REPR - 3] + "..."
    return text


def log_call(func: F) -> F:
    """Decorator that logs function entry, exit and runtime at DEBUG level."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        logger = logging.getLogger(func.__module__)
        if not logger.isEnabledFor(logging.DEBUG):
            return func(*args, **kwargs)

        logger.debug("Entering %s", func.__qualname__)
        logger.debug(
            "args=%s kwargs=%s",
            [_summarize(a) for a in args],
            {k: _summarize(v) for k, v in kwargs.items()},
        )
        start = time.perf_counter()
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            logger.debug("%s raised %s: %s", func.__qualname__,
                         type(exc).__name__, exc)
            raise
        runtime_ms = (time.perf_counter() - start) * 1000.0
        logger.debug("return=%s", _summarize(result))
        logger.debug("Exiting %s (%.2fms)", func.__qualname__, runtime_ms)
        return result

    return wrapper  # type: ignore[return-value]
