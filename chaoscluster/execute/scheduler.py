"""
Run one action per host with a bound on how many run at the same time.

run_bounded starts one thread per host. A thread may only call the action
while it holds a slot of the AdmissionGate, so the gate's capacity, not the
number of threads, bounds the concurrency. Every thread reports exactly one
outcome to a single queue and run_bounded returns once it has read one
outcome per host.
"""
import queue
import random
import threading

from collections import OrderedDict
from logzero import logger
from typing import Callable, Dict, List, Optional

from chaoscluster.common.errors import (
    AggregateError,
    HostActionError,
    HostError,
    NoHostsError,
)


class AdmissionGate(object):
    """
    A counting gate that lets at most `capacity` holders in at once.

    Use as a context manager. The slot is released when the block exits,
    whether it raised or not.
    """

    def __init__(self, capacity: int):
        if isinstance(capacity, bool) or not isinstance(capacity, int) \
                or capacity < 1:
            raise ValueError(
                "capacity must be a positive integer, got {!r}".format(
                    capacity))
        self.capacity = capacity
        self._slots = threading.BoundedSemaphore(capacity)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._high_water_mark = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def high_water_mark(self) -> int:
        with self._lock:
            return self._high_water_mark

    def acquire(self):
        self._slots.acquire()
        with self._lock:
            self._in_flight += 1
            if self._in_flight > self._high_water_mark:
                self._high_water_mark = self._in_flight

    def release(self):
        with self._lock:
            self._in_flight -= 1
        self._slots.release()

    def __enter__(self):
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False


class BatchResult(object):
    """
    The outcome of every host of one batch.

    An outcome is None for a host whose action succeeded, or the exception it
    raised. Exactly one outcome is recorded per host.
    """

    def __init__(self, hosts: List[str]):
        self.hosts = list(hosts)
        self._expected = set(self.hosts)
        self.outcomes = OrderedDict()  # type: Dict[str, Optional[Exception]]

    def record(self, host: str, error: Optional[Exception] = None):
        if host not in self._expected:
            raise RuntimeError("outcome for unknown host {}".format(host))
        if host in self.outcomes:
            raise RuntimeError("outcome for host {} recorded twice".format(
                host))
        self.outcomes[host] = error

    @property
    def complete(self) -> bool:
        return len(self.outcomes) == len(self._expected)

    @property
    def succeeded(self) -> List[str]:
        return [h for h, e in self.outcomes.items() if e is None]

    @property
    def failed(self) -> List[str]:
        return [h for h, e in self.outcomes.items() if e is not None]

    @property
    def errors(self) -> List[Exception]:
        return [e for e in self.outcomes.values() if e is not None]

    @property
    def error(self) -> Optional[AggregateError]:
        return AggregateError.from_errors(self.errors)

    @property
    def ok(self) -> bool:
        return self.complete and not self.failed

    def raise_on_error(self):
        err = self.error
        if err is not None:
            raise err

    def __repr__(self):
        return "BatchResult(succeeded={}, failed={})".format(
            len(self.succeeded), len(self.failed))


def _attributed(host: str, error: BaseException) -> HostError:
    if isinstance(error, HostError):
        return error
    wrapped = HostActionError(host, "failed: {}".format(error))
    wrapped.__cause__ = error
    return wrapped


def run_bounded(hosts: List[str], max_in_flight: int,
                action: Callable[[str], None],
                rng: Optional[random.Random] = None,
                gate: Optional[AdmissionGate] = None) -> BatchResult:
    """
    Call `action(host)` once for every host, at most `max_in_flight` at once.

    Hosts are dispatched in a random order. An exception raised by the action
    marks that host as failed and does not affect the others. The call blocks
    until every host has finished.

    :param hosts: Hosts to act on. Duplicates are acted on once.
    :param max_in_flight: Capacity of the admission gate.
    :param action: Called with a host. Returns normally on success.
    :param rng: Source of the dispatch shuffle. Defaults to a new
        random.Random().
    :param gate: An AdmissionGate to use instead of a new one of capacity
        `max_in_flight`.
    :return: BatchResult
    """
    hosts = list(OrderedDict.fromkeys(hosts))
    if not hosts:
        raise NoHostsError()
    if gate is None:
        gate = AdmissionGate(max_in_flight)

    if rng is None:
        rng = random.Random()
    rng.shuffle(hosts)

    result = BatchResult(hosts)
    outcomes = queue.Queue()

    def worker(host):
        error = None
        try:
            with gate:
                action(host)
        except Exception as e:
            logger.debug("host: %s action failed: %s", host, e)
            error = _attributed(host, e)
        except BaseException as e:
            error = _attributed(host, e)
            raise
        finally:
            outcomes.put((host, error))

    logger.debug("dispatching %d hosts with %d parallel slots: %s",
                 len(hosts), gate.capacity, hosts)
    threads = []
    for host in hosts:
        thread = threading.Thread(target=worker, args=(host,),
                                  name="chaoscluster-{}".format(host))
        thread.start()
        threads.append(thread)

    for _ in hosts:
        host, error = outcomes.get()
        result.record(host, error)
        if error is None:
            logger.info("host: %s done (%d/%d)", host, len(result.outcomes),
                        len(hosts))
        else:
            logger.error("host: %s failed (%d/%d): %s", host,
                         len(result.outcomes), len(hosts), error)

    for thread in threads:
        thread.join()

    logger.debug("batch finished: %r, max parallel: %d", result,
                 gate.high_water_mark)
    return result
