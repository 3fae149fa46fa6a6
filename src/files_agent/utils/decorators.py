"""Decorator utilities for cross-cutting concerns."""
import time
import logging
import functools
from typing import Any, Callable, TypeVar, cast

from files_agent.errors import BackendFailure, FilesError

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])

def log_execution_time(func: F) -> F:
    """Decorator to log function execution time.

    Args:
        func: The function to decorate

    Returns:
        Decorated function that logs execution time
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.time()
        try:
            result = func(*args, **kwargs)
            duration = time.time() - start_time
            logger.info(f"{func.__name__} completed in {duration:.2f}s")
            return result
        except Exception as e:
            duration = time.time() - start_time
            logger.error(f"{func.__name__} failed after {duration:.2f}s: {str(e)}")
            raise
    return cast(F, wrapper)

def service_operation(func: F) -> F:
    """Decorator for files service entry points.

    ``FilesError`` passes through untouched. Anything else is logged with its
    traceback and re-raised as a generic ``BackendFailure`` so callers never
    see internal details.

    Args:
        func: The service method to decorate

    Returns:
        Decorated function with error mapping
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except FilesError:
            raise
        except Exception as e:
            logger.exception(f"Unexpected error in {func.__name__}")
            raise BackendFailure("Internal error", details=f"{func.__name__} failed") from e
    return cast(F, wrapper)
