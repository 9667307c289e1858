from logzero import logger
from time import sleep
from typing import Callable, TypeVar

T = TypeVar('T')


def retry(attempts: int, delay: float, f: Callable[[], T]) -> T:
    """
    Call f until it returns without raising.

    Makes at most `attempts` calls with `delay` seconds in between and
    re-raises the last exception if every call failed.

    :param attempts: Maximum number of calls. Must be at least 1.
    :type attempts: int
    :param delay: Seconds to sleep between two calls.
    :type delay: float
    :param f: The callable to retry.
    :type f: Callable[[], T]
    :return: Whatever f returned.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")
    for attempt in range(1, attempts + 1):
        try:
            return f()
        except Exception as e:
            if attempt == attempts:
                raise
            logger.debug("attempt %d/%d failed: %s", attempt, attempts, e)
            sleep(delay)
