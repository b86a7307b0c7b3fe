from functools import wraps

from loguru import logger


def safe_catch_async(func):
    """Log and swallow any exception of a background coroutine.

    Meant for scheduler jobs, where a raised exception would only end up in
    the scheduler's own error log. Cancellation is still propagated.
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            logger.exception(f"Error in {func.__name__}: {e}")
            return None

    return wrapper
