"""Structured logging around pipeline steps."""

from collections.abc import Callable
from functools import wraps
import time
from typing import Any, TypeVar

import structlog

from .errors import ClaimLostError, SSHUnreachableError, is_rate_limited

logger = structlog.get_logger()

T = TypeVar("T")


def _is_transient(exc: BaseException) -> bool:
    """Errors the driver turns into a requeue; they are not failures."""
    return isinstance(exc, SSHUnreachableError | ClaimLostError) or is_rate_limited(exc)


def log_step_execution(step_name: str) -> Callable:
    """Decorator to log step start/end with structured logging.

    Args:
        step_name: Name of the step for logging context.

    Returns:
        Decorated async function with structured logging.
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            structlog.contextvars.bind_contextvars(step=step_name)

            logger.info("step_start")
            start = time.time()

            try:
                result = await func(*args, **kwargs)
                duration = (time.time() - start) * 1000

                logger.info(
                    "step_complete",
                    duration_ms=round(duration, 2),
                    outcome=type(result).__name__,
                )

                return result

            except Exception as e:
                duration = (time.time() - start) * 1000

                if _is_transient(e):
                    logger.warning(
                        "step_interrupted",
                        duration_ms=round(duration, 2),
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                else:
                    logger.error(
                        "step_failed",
                        duration_ms=round(duration, 2),
                        error=str(e),
                        error_type=type(e).__name__,
                        exc_info=True,
                    )
                raise
            finally:
                structlog.contextvars.unbind_contextvars("step")

        return wrapper

    return decorator
