import abc
import random
import re
import time

from collections import OrderedDict
from enum import Enum
from logzero import logger
from os import remove
from os.path import join
from typing import Callable, List, Optional, Union

from chaoscluster.common import (
    DEFAULT_CHAOS_NETWORK_INTERFACE,
    DEFAULT_CHAOS_NETWORK_STALL,
    DEFAULT_CHAOS_PANIC_REBOOT_DELAY,
    DEFAULT_CHAOS_SERVICE,
    DEFAULT_CHAOS_TRIGGER_DELAY,
    get_chaos_temp_dir,
    to_seconds,
)
from chaoscluster.common.budget import ConcurrencyBudget, resolve_budget
from chaoscluster.common.errors import (
    CommandFailedError,
    HostActionError,
    HostError,
    NoHostsError,
)
from chaoscluster.common.poll import DEFAULT_POLL_SPEC, PollSpec
from chaoscluster.execute.execute import (
    EXIT_STATUS_MISSING,
    RemoteExecutor,
    Result,
)
from chaoscluster.execute.scheduler import BatchResult, run_bounded
from chaoscluster.probes.host import wait_for_down, wait_for_up

# The trigger runs in the background after a short sleep so the ssh command
# can finish cleanly before the host goes away.
CMD_BACKGROUND = "nohup sh -c '{}' >/dev/null 2>&1 &"

_UNIT_NAME_RE = re.compile(r'^[\w@.:-]+$')


class CommandOutcome(Enum):
    """
    What issuing a disruptive command amounted to.
    """
    SUCCESS = 1
    # The session ended without an exit status because the host went down.
    EXPECTED_DISCONNECT = 2
    FAILURE = 3

    @property
    def ok(self) -> bool:
        return self is not CommandOutcome.FAILURE


def classify_trigger(result: Result) -> CommandOutcome:
    if result.return_code == 0:
        return CommandOutcome.SUCCESS
    if result.return_code == EXIT_STATUS_MISSING:
        return CommandOutcome.EXPECTED_DISCONNECT
    return CommandOutcome.FAILURE


class Disruption(abc.ABC):
    """
    A way of taking a host down that it is expected to recover from.

    Subclasses provide the command that triggers the disruption. They may
    also stage something on the host beforehand (pre_step) that makes sure
    it recovers, and clean it up once the host is back (post_step).
    """

    name = None

    def __init__(self, interface: str = DEFAULT_CHAOS_NETWORK_INTERFACE,
                 service: str = DEFAULT_CHAOS_SERVICE,
                 delay: int = DEFAULT_CHAOS_TRIGGER_DELAY):
        # Both end up inside a single quoted `sh -c` script
        for kind, value in (('interface', interface), ('service', service)):
            if not _UNIT_NAME_RE.match(value or ''):
                raise ValueError("invalid {} name {!r}".format(kind, value))
        self.interface = interface
        self.service = service
        self.delay = int(delay)

    @abc.abstractmethod
    def trigger_command(self, recovery_window: float = 0) -> str:
        raise NotImplementedError('users must define trigger_command to use '
                                  'this base class')

    def pre_step(self, executor: RemoteExecutor, host: str,
                 recovery_window: float = 0):
        pass

    def post_step(self, executor: RemoteExecutor, host: str):
        pass

    def _background(self, *commands) -> str:
        script = " && ".join(("sleep {}".format(self.delay),) + commands)
        return CMD_BACKGROUND.format(script)

    @staticmethod
    def _run_step(executor: RemoteExecutor, host: str, command: str,
                  step: str) -> Result:
        result = executor.execute(host, command, as_sudo=True)
        if result.return_code != 0:
            raise CommandFailedError(host, command, result, step=step)
        return result

    def __repr__(self):
        return "{}(interface={!r}, service={!r})".format(
            self.__class__.__name__, self.interface, self.service)


class RebootDisruption(Disruption):
    """
    Cut the network, stop the service and reboot.

    With a recovery window the host sleeps that long before rebooting.
    """

    name = "reboot"

    def trigger_command(self, recovery_window: float = 0) -> str:
        commands = [
            "sudo ip link set {} down".format(self.interface),
            "sudo systemctl stop {}".format(self.service),
        ]
        if recovery_window > 0:
            commands.append("sleep {}s".format(int(recovery_window)))
        commands.append("sudo reboot")
        return self._background(*commands)


class KernelPanicDisruption(Disruption):
    """
    Crash the kernel through sysrq.

    Before the crash a sysctl drop-in is copied to the host that enables
    sysrq and makes the kernel reboot itself `reboot_delay` seconds after a
    panic (or after the recovery window, when one is given).
    """

    name = "kernel-panic"
    sysctl_file = "/etc/sysctl.d/90-chaoscluster-panic.conf"

    def __init__(self, reboot_delay: int = DEFAULT_CHAOS_PANIC_REBOOT_DELAY,
                 **kwargs):
        super().__init__(**kwargs)
        self.reboot_delay = int(reboot_delay)

    def panic_timeout(self, recovery_window: float = 0) -> int:
        if recovery_window > 0:
            return max(int(recovery_window), 1)
        return max(self.reboot_delay, 1)

    def pre_step(self, executor: RemoteExecutor, host: str,
                 recovery_window: float = 0):
        local_path = join(get_chaos_temp_dir(),
                          "{}-panic.conf".format(host.replace('/', '_')))
        with open(local_path, 'w') as f:
            f.write("kernel.sysrq = 1\n")
            f.write("kernel.panic = {}\n".format(
                self.panic_timeout(recovery_window)))
        logger.debug("node: %s staging %s", host, self.sysctl_file)
        try:
            result = executor.put(host, local_path, self.sysctl_file,
                                  as_sudo=True)
        finally:
            remove(local_path)
        if result.return_code != 0:
            raise CommandFailedError(host, "put {}".format(self.sysctl_file),
                                     result, step="pre-step")
        self._run_step(executor, host, "sysctl -p {}".format(self.sysctl_file),
                       "pre-step")

    def trigger_command(self, recovery_window: float = 0) -> str:
        return self._background("echo c | sudo tee /proc/sysrq-trigger")

    def post_step(self, executor: RemoteExecutor, host: str):
        self._run_step(executor, host,
                       "sh -c 'rm -f {} && sysctl -w kernel.panic=0'".format(
                           self.sysctl_file),
                       "post-step")


class NetworkStallDisruption(Disruption):
    """
    Take the network interface down for a while and bring it back.

    A transient systemd timer is scheduled first that brings the interface
    back up even if the background shell that took it down dies.
    """

    name = "network-stall"
    # Seconds the safety timer fires after the stall should have ended.
    heal_grace = 30

    def __init__(self, stall: int = DEFAULT_CHAOS_NETWORK_STALL, **kwargs):
        super().__init__(**kwargs)
        self.stall = int(stall)

    @property
    def heal_unit(self) -> str:
        return "chaoscluster-heal-{}".format(self.interface)

    def stall_seconds(self, recovery_window: float = 0) -> int:
        if recovery_window > 0:
            return int(recovery_window)
        return self.stall

    def pre_step(self, executor: RemoteExecutor, host: str,
                 recovery_window: float = 0):
        on_active = (self.delay + self.stall_seconds(recovery_window) +
                     self.heal_grace)
        self._run_step(executor, host,
                       "systemd-run --unit={} --on-active={}s "
                       "/sbin/ip link set {} up".format(
                           self.heal_unit, on_active,
                           self.interface),
                       "pre-step")

    def trigger_command(self, recovery_window: float = 0) -> str:
        return self._background(
            "sudo ip link set {} down".format(self.interface),
            "sleep {}s".format(self.stall_seconds(recovery_window)),
            "sudo ip link set {} up".format(self.interface))

    def post_step(self, executor: RemoteExecutor, host: str):
        # The timer is gone already if it fired
        self._run_step(executor, host,
                       "sh -c 'systemctl stop {}.timer || true'".format(
                           self.heal_unit),
                       "post-step")


DISRUPTIONS = {
    RebootDisruption.name: RebootDisruption,
    KernelPanicDisruption.name: KernelPanicDisruption,
    NetworkStallDisruption.name: NetworkStallDisruption,
}


def _step(host: str, step: str, fn: Callable, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except HostError:
        raise
    except Exception as e:
        raise HostActionError(host, "{} failed: {}".format(step, e),
                              step=step) from e


def disrupt_host(executor: RemoteExecutor, host: str,
                 disruption: Disruption,
                 recovery_window: Union[str, int, float] = 0,
                 poll: PollSpec = DEFAULT_POLL_SPEC,
                 sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Disrupt a single host and wait for it to recover.

    Steps, in order: pre-step, trigger, wait for the host to go down, sleep
    for the recovery window, wait for the host to come back up, post-step.
    The first step that fails aborts the sequence with a HostError naming
    the host and the step.

    :param executor: Executor used to reach the host. Required.
    :type executor: RemoteExecutor
    :param host: The host's address/alias. Required.
    :type host: str
    :param disruption: What to do to the host. Required.
    :type disruption: Disruption
    :param recovery_window: Seconds the host stays down before we start
        checking that it is back. Optional. (Default: 0)
    :type recovery_window: Union[str, int, float]
    :param poll: Interval and timeout of the down and up polls.
        Optional. (Default: chaoscluster.common.poll.DEFAULT_POLL_SPEC)
    :type poll: PollSpec
    :return: None
    """
    recovery_window = to_seconds(recovery_window, 'recovery_window')
    service = disruption.service

    _step(host, "pre-step", disruption.pre_step, executor, host,
          recovery_window)

    command = disruption.trigger_command(recovery_window)
    logger.debug("node: %s %s", host, disruption.name)
    logger.debug("node: %s executing cmd: '%s'", host, command)
    result = _step(host, "trigger", executor.execute, host, command)
    outcome = classify_trigger(result)
    if outcome is CommandOutcome.EXPECTED_DISCONNECT:
        # A terminated session is perfectly normal while going down.
        logger.debug("node: %s session terminated by the disruption", host)
    elif not outcome.ok:
        raise CommandFailedError(host, command, result)

    _step(host, "wait-for-down", wait_for_down, executor, host,
          service=service, poll=poll, sleep=sleep)

    logger.debug("node: %s down, waiting for node to come back up", host)
    if recovery_window > 0:
        sleep(recovery_window)
    _step(host, "wait-for-up", wait_for_up, executor, host, service=service,
          poll=poll, sleep=sleep)

    _step(host, "post-step", disruption.post_step, executor, host)
    logger.debug("node: %s %s successful", host, disruption.name)


def disrupt_hosts(executor: RemoteExecutor, hosts: List[str],
                  disruption: Disruption,
                  max_disruption: Union[ConcurrencyBudget, int, str, None] = None,
                  recovery_window: Union[str, int, float] = 0,
                  poll: PollSpec = DEFAULT_POLL_SPEC,
                  rng: Optional[random.Random] = None,
                  sleep: Callable[[float], None] = time.sleep) -> BatchResult:
    """
    Disrupt every host once, at most `max_disruption` of them at a time.

    Fails fast with NoHostsError for an empty host list and with
    InvalidBudgetError for a malformed budget, before anything is
    disrupted. Per-host failures are collected in the returned BatchResult.

    :param max_disruption: Absolute count ('3', 3) or percentage ('30%').
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_MAX_DISRUPTION)
    :return: BatchResult
    """
    hosts = list(OrderedDict.fromkeys(hosts))
    if not hosts:
        raise NoHostsError()
    max_parallel = resolve_budget(max_disruption, len(hosts))
    recovery_window = to_seconds(recovery_window, 'recovery_window')

    logger.info("will %s nodes: %s", disruption.name, hosts)
    logger.info("parallel %s: %d", disruption.name, max_parallel)

    def action(host):
        disrupt_host(executor, host, disruption,
                     recovery_window=recovery_window, poll=poll, sleep=sleep)

    return run_bounded(hosts, max_parallel, action, rng=rng)
