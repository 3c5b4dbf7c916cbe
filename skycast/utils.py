import functools
import inspect

from loguru import logger


def logged_job(func):
    """
    A decorator for scheduled coroutine jobs that logs their runs.

    Features:
    - Logs the job name and bound parameters before execution
    - Logs the exception type and message, then re-raises it unchanged
    - Logs completion together with the job's return value
    - Preserves function metadata and return values
    """
    sig = inspect.signature(func)

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__qualname__

        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = {k: v for k, v in bound_args.arguments.items() if k != "self"}

        logger.debug(f"Running job {func_name} with params: {params}")

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.error(f"Job {func_name} failed: {type(e).__name__}: {e}")
            raise

        logger.debug(f"Job {func_name} finished: {result!r}")
        return result

    return wrapper
