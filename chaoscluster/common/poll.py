import time

from collections import namedtuple
from logzero import logger
from typing import Callable, Tuple, Type

from chaoscluster.common import (
    DEFAULT_CHAOS_POLL_INTERVAL,
    DEFAULT_CHAOS_POLL_TIMEOUT,
)
from chaoscluster.common.errors import PollTimeoutError, TransportError

PollSpec = namedtuple('PollSpec', ['interval', 'timeout'])
DEFAULT_POLL_SPEC = PollSpec(DEFAULT_CHAOS_POLL_INTERVAL,
                             DEFAULT_CHAOS_POLL_TIMEOUT)


def poll_until(interval: float, timeout: float, probe: Callable[[], bool],
               retry_on: Tuple[Type[BaseException], ...] = (TransportError,),
               sleep: Callable[[float], None] = time.sleep,
               clock: Callable[[], float] = time.monotonic) -> int:
    """
    Call `probe` until it returns True or `timeout` seconds have elapsed.

    The first call happens immediately, later calls every `interval` seconds.
    One last call is always made once the deadline is reached, so a probe is
    evaluated at least floor(timeout / interval) times before giving up.

    Exceptions listed in `retry_on` count as "not yet". Any other exception
    propagates to the caller.

    :param interval: Seconds between two calls of probe.
    :type interval: float
    :param timeout: Seconds after which PollTimeoutError is raised.
    :type timeout: float
    :param probe: A callable returning True once the condition holds.
    :type probe: Callable[[], bool]
    :param retry_on: Exception types treated as a False probe result.
    :type retry_on: Tuple[Type[BaseException], ...]
    :return: int The number of times probe was called.
    """
    if interval < 0 or timeout < 0:
        raise ValueError("interval and timeout must not be negative")

    start = clock()
    deadline = start + timeout
    attempts = 0
    while True:
        attempts += 1
        try:
            if probe():
                return attempts
        except retry_on as e:
            logger.debug("probe attempt %d failed: %s", attempts, e)

        now = clock()
        if now >= deadline:
            raise PollTimeoutError(timeout, attempts)
        # Attempt n is due at start + n * interval, however long the probe
        # itself took.
        next_at = min(start + attempts * interval, deadline)
        sleep(max(0, next_at - now))
