import shlex
import time

from logzero import logger
from typing import Callable, List

from chaoscluster.common import DEFAULT_CHAOS_PROBE_TIMEOUT, DEFAULT_CHAOS_SERVICE
from chaoscluster.common.errors import (
    AuthenticationError,
    HostDidNotGoDownError,
    HostDidNotRecoverError,
    PollTimeoutError,
    TransportError,
)
from chaoscluster.common.poll import DEFAULT_POLL_SPEC, PollSpec, poll_until
from chaoscluster.execute.execute import EXIT_STATUS_MISSING, RemoteExecutor

# pam_nologin refuses logins while a host boots up or shuts down, so a
# refused login during a disruption only means "not yet".
RETRY_ON = (TransportError, AuthenticationError)


def host_is_active(executor: RemoteExecutor, host: str,
                   service: str = DEFAULT_CHAOS_SERVICE,
                   timeout: int = DEFAULT_CHAOS_PROBE_TIMEOUT) -> bool:
    """
    Liveness probe: is `service` active on `host`?

    Only an exact "active" answer counts; "inactive", "activating" and
    "failed" do not. Transport failures are raised as TransportError.

    :param executor: Executor used to reach the host. Required.
    :type executor: RemoteExecutor
    :param host: The host's address/alias. Required.
    :type host: str
    :param service: The systemd unit to ask about.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_SERVICE)
    :type service: str
    :param timeout: Seconds the probe command may take.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_PROBE_TIMEOUT)
    :type timeout: int
    :return: bool
    """
    result = executor.execute(host,
                              "systemctl is-active {}".format(
                                  shlex.quote(service)),
                              timeout=timeout)
    if result.return_code == EXIT_STATUS_MISSING:
        logger.debug("host: %s probe session terminated", host)
        return False
    return result.stdout.strip() == "active"


def host_is_down(executor: RemoteExecutor, host: str,
                 service: str = DEFAULT_CHAOS_SERVICE,
                 timeout: int = DEFAULT_CHAOS_PROBE_TIMEOUT) -> bool:
    """
    A host is down when it can not be reached or its service is not active.

    Authentication failures are not taken as "down" and propagate to the
    caller.
    """
    try:
        return not host_is_active(executor, host, service=service,
                                  timeout=timeout)
    except TransportError as e:
        logger.debug("host: %s unreachable: %s", host, e)
        return True


def wait_for_down(executor: RemoteExecutor, host: str,
                  service: str = DEFAULT_CHAOS_SERVICE,
                  poll: PollSpec = DEFAULT_POLL_SPEC,
                  sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Wait until `host` stops answering the liveness probe.

    Raises HostDidNotGoDownError when it is still up after poll.timeout.
    """
    def probe():
        return host_is_down(executor, host, service=service)

    try:
        poll_until(poll.interval, poll.timeout, probe, retry_on=RETRY_ON,
                   sleep=sleep)
    except PollTimeoutError as e:
        raise HostDidNotGoDownError(host) from e
    logger.debug("host: %s is down", host)


def wait_for_up(executor: RemoteExecutor, host: str,
                service: str = DEFAULT_CHAOS_SERVICE,
                poll: PollSpec = DEFAULT_POLL_SPEC,
                sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Wait until the liveness probe reports `service` active on `host` again.

    Raises HostDidNotRecoverError when it is not back after poll.timeout.
    """
    def probe():
        if host_is_active(executor, host, service=service):
            return True
        logger.debug("host: %s system is not running yet", host)
        return False

    try:
        poll_until(poll.interval, poll.timeout, probe, retry_on=RETRY_ON,
                   sleep=sleep)
    except PollTimeoutError as e:
        raise HostDidNotRecoverError(host) from e
    logger.debug("host: %s is up", host)


def count_down_hosts(executor: RemoteExecutor, hosts: List[str],
                     service: str = DEFAULT_CHAOS_SERVICE) -> int:
    """
    How many of `hosts` are down right now.
    """
    down = 0
    for host in hosts:
        if host_is_down(executor, host, service=service):
            down += 1
    logger.debug("%d of %d hosts down", down, len(hosts))
    return down


def wait_for_all_down(executor: RemoteExecutor, hosts: List[str],
                      service: str = DEFAULT_CHAOS_SERVICE,
                      poll: PollSpec = DEFAULT_POLL_SPEC,
                      sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Wait until every host in `hosts` is down at the same time.

    Raises PollTimeoutError otherwise.
    """
    poll_until(poll.interval, poll.timeout,
               lambda: count_down_hosts(executor, hosts,
                                        service=service) == len(hosts),
               retry_on=RETRY_ON, sleep=sleep)
