import os
import random

import pytest

from chaoscluster.actions.disruption import (
    CommandOutcome,
    KernelPanicDisruption,
    NetworkStallDisruption,
    RebootDisruption,
    classify_trigger,
    disrupt_host,
    disrupt_hosts,
)
from chaoscluster.common.errors import (
    AggregateError,
    AuthenticationError,
    CommandFailedError,
    HostActionError,
    HostDidNotGoDownError,
    HostDidNotRecoverError,
    InvalidBudgetError,
    NoHostsError,
)
from chaoscluster.common.poll import PollSpec
from chaoscluster.execute.execute import EXIT_STATUS_MISSING, Result
from test.fakes import FakeExecutor

FAST_POLL = PollSpec(0.001, 0.05)

DISRUPTIONS = [RebootDisruption, KernelPanicDisruption, NetworkStallDisruption]


def is_probe(command):
    return command.startswith("systemctl is-active")


@pytest.mark.parametrize("result, outcome", [
    (Result(0, "", ""), CommandOutcome.SUCCESS),
    (Result(EXIT_STATUS_MISSING, "", ""), CommandOutcome.EXPECTED_DISCONNECT),
    (Result(1, "", "sudo: a password is required"), CommandOutcome.FAILURE),
    (Result(127, "", "sh: not found"), CommandOutcome.FAILURE),
])
def test_classify_trigger(result, outcome):
    assert classify_trigger(result) is outcome
    assert outcome.ok is (outcome is not CommandOutcome.FAILURE)


def test_reboot_command():
    command = RebootDisruption().trigger_command()
    assert command == ("nohup sh -c 'sleep 10 && sudo ip link set eth0 down "
                       "&& sudo systemctl stop kubelet && sudo reboot' "
                       ">/dev/null 2>&1 &")
    command = RebootDisruption(interface="ens5").trigger_command(120)
    assert "ip link set ens5 down" in command
    assert "sleep 120s && sudo reboot" in command


def test_network_stall_command():
    disruption = NetworkStallDisruption(stall=45, delay=5)
    command = disruption.trigger_command()
    assert command.startswith("nohup sh -c 'sleep 5 && ")
    assert "ip link set eth0 down && sleep 45s && sudo ip link set eth0 up" \
        in command
    assert "sleep 90s" in disruption.trigger_command(90)


def test_kernel_panic_command():
    command = KernelPanicDisruption().trigger_command()
    assert "echo c | sudo tee /proc/sysrq-trigger" in command
    assert KernelPanicDisruption(reboot_delay=0).panic_timeout() == 1
    assert KernelPanicDisruption().panic_timeout(30) == 30


@pytest.mark.parametrize("kwargs", [
    {'interface': "eth0; rm -rf /"},
    {'service': "kubelet' && reboot '"},
    {'service': ""},
])
def test_unsafe_names_are_rejected(kwargs):
    with pytest.raises(ValueError):
        RebootDisruption(**kwargs)


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_disrupt_host_steps_in_order(disruption_cls):
    executor = FakeExecutor(down_for=3)
    disruption = disruption_cls()
    disrupt_host(executor, "node1", disruption, poll=FAST_POLL)

    commands = executor.commands["node1"]
    trigger = commands.index(disruption.trigger_command())
    probes = [i for i, c in enumerate(commands) if is_probe(c)]
    assert probes and min(probes) > trigger
    # 1 probe sees it down, 2 more see it still down, 1 sees it back up
    assert len(probes) == 4
    if disruption_cls is RebootDisruption:
        assert trigger == 0
        assert len(commands) == 5
    else:
        assert trigger > 0
        assert max(probes) < len(commands) - 1


def test_kernel_panic_stages_sysctl_drop_in():
    executor = FakeExecutor()
    disruption = KernelPanicDisruption(reboot_delay=15)
    disrupt_host(executor, "node1", disruption, poll=FAST_POLL)

    [(remote_path, content, as_sudo)] = executor.puts["node1"]
    assert remote_path == KernelPanicDisruption.sysctl_file
    assert "kernel.panic = 15" in content
    assert "kernel.sysrq = 1" in content
    assert as_sudo
    commands = executor.commands["node1"]
    assert commands[0] == "put {}".format(KernelPanicDisruption.sysctl_file)
    assert commands[1].startswith("sysctl -p ")
    assert commands[-1].startswith("sh -c 'rm -f ")


def test_kernel_panic_removes_staged_file():
    staged = []

    class RecordingExecutor(FakeExecutor):
        def _put_on_host(self, host, local_path, remote_path, **kwargs):
            staged.append(local_path)
            return super()._put_on_host(host, local_path, remote_path,
                                        **kwargs)

    executor = RecordingExecutor()
    disrupt_host(executor, "node1", KernelPanicDisruption(), poll=FAST_POLL)
    assert len(staged) == 1
    assert not os.path.exists(staged[0])


def test_network_stall_schedules_and_stops_heal_timer():
    executor = FakeExecutor()
    disruption = NetworkStallDisruption(stall=20, delay=10)
    disrupt_host(executor, "node1", disruption, poll=FAST_POLL)

    commands = executor.commands["node1"]
    assert commands[0] == ("systemd-run --unit=chaoscluster-heal-eth0 "
                           "--on-active=60s /sbin/ip link set eth0 up")
    assert commands[-1] == \
        "sh -c 'systemctl stop chaoscluster-heal-eth0.timer || true'"


@pytest.mark.parametrize("trigger_result", [
    Result(0, "", ""), Result(EXIT_STATUS_MISSING, "", ""),
])
def test_trigger_success_or_disconnect(trigger_result):
    executor = FakeExecutor(trigger_result=trigger_result)
    disrupt_host(executor, "node1", RebootDisruption(), poll=FAST_POLL)


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_failed_trigger_aborts(disruption_cls):
    executor = FakeExecutor()
    executor.failing_trigger.add("node1")
    with pytest.raises(CommandFailedError) as excinfo:
        disrupt_host(executor, "node1", disruption_cls(), poll=FAST_POLL)
    assert excinfo.value.host == "node1"
    assert excinfo.value.step == "trigger"
    assert "password is required" in str(excinfo.value)
    assert not any(is_probe(c) for c in executor.commands["node1"])


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_host_that_never_goes_down(disruption_cls):
    executor = FakeExecutor()
    executor.never_down.add("node1")
    with pytest.raises(HostDidNotGoDownError) as excinfo:
        disrupt_host(executor, "node1", disruption_cls(), poll=FAST_POLL)
    assert excinfo.value.step == "wait-for-down"


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_host_that_never_comes_back(disruption_cls):
    executor = FakeExecutor()
    executor.never_up.add("node1")
    with pytest.raises(HostDidNotRecoverError) as excinfo:
        disrupt_host(executor, "node1", disruption_cls(), poll=FAST_POLL)
    assert excinfo.value.step == "wait-for-up"


def test_inactive_service_after_reboot_is_not_recovered():
    executor = FakeExecutor()
    executor.inactive.add("node1")
    with pytest.raises(HostDidNotRecoverError):
        disrupt_host(executor, "node1", RebootDisruption(), poll=FAST_POLL)


class NologinExecutor(FakeExecutor):
    """Refuses logins for a few probes once the trigger ran, like pam_nologin
    does while a host shuts down or boots up."""

    def __init__(self, refuse_after=0, refusals=1, **kwargs):
        super().__init__(**kwargs)
        self.refuse_after = refuse_after
        self.refusals = refusals
        self.probes_since_trigger = 0

    def _execute_on_host(self, host, action, user=None, as_sudo=False,
                         **kwargs):
        triggered = any(c.startswith("nohup") for c in self.commands[host])
        if triggered and is_probe(action):
            self.probes_since_trigger += 1
            if (self.probes_since_trigger > self.refuse_after and
                    self.refusals > 0):
                self.refusals -= 1
                self.commands[host].append(action)
                raise AuthenticationError(
                    "host: {} System is booting up".format(host))
        return super()._execute_on_host(host, action, user=user,
                                        as_sudo=as_sudo, **kwargs)


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_refused_login_while_booting_is_not_yet_up(disruption_cls):
    # Down on the first probe, login refused on the second, up on the third
    executor = NologinExecutor(refuse_after=1, down_for=1)
    disrupt_host(executor, "node1", disruption_cls(), poll=FAST_POLL)
    assert executor.refusals == 0
    assert len([c for c in executor.commands["node1"] if is_probe(c)]) == 3


def test_refused_login_while_shutting_down_is_not_yet_down():
    executor = NologinExecutor(refuse_after=0, down_for=1)
    disrupt_host(executor, "node1", RebootDisruption(), poll=FAST_POLL)
    assert executor.refusals == 0


def test_login_refused_until_timeout_is_not_recovered():
    executor = NologinExecutor(refuse_after=1, refusals=10 ** 6, down_for=1)
    with pytest.raises(HostDidNotRecoverError) as excinfo:
        disrupt_host(executor, "node1", RebootDisruption(), poll=FAST_POLL)
    assert excinfo.value.step == "wait-for-up"


def test_recovery_window_is_slept():
    sleeps = []
    executor = FakeExecutor(down_for=1)
    disrupt_host(executor, "node1", RebootDisruption(), recovery_window="5",
                 poll=FAST_POLL, sleep=sleeps.append)
    assert sleeps == [5.0]
    assert "sleep 5s && sudo reboot" in executor.commands["node1"][0]


def test_negative_recovery_window():
    with pytest.raises(ValueError):
        disrupt_host(FakeExecutor(), "node1", RebootDisruption(),
                     recovery_window=-1)


def test_failing_post_step_names_the_step():
    class BrokenCleanup(RebootDisruption):
        def post_step(self, executor, host):
            raise OSError("disk full")

    with pytest.raises(HostActionError) as excinfo:
        disrupt_host(FakeExecutor(), "node1", BrokenCleanup(), poll=FAST_POLL)
    assert excinfo.value.step == "post-step"
    assert isinstance(excinfo.value.__cause__, OSError)


@pytest.mark.parametrize("disruption_cls", DISRUPTIONS)
def test_disrupt_hosts_one_failure(disruption_cls):
    hosts = ["node{}".format(i) for i in range(1, 6)]
    executor = FakeExecutor()
    executor.failing_trigger.add("node3")

    result = disrupt_hosts(executor, hosts, disruption_cls(),
                           max_disruption="40%", poll=FAST_POLL,
                           rng=random.Random(7))

    assert result.failed == ["node3"]
    assert sorted(result.succeeded) == ["node1", "node2", "node4", "node5"]
    error = result.error
    assert isinstance(error, AggregateError)
    assert error.hosts == ["node3"]
    assert isinstance(error.errors[0], CommandFailedError)
    for host in hosts:
        triggers = [c for c in executor.commands[host]
                    if c.startswith("nohup")]
        assert len(triggers) == 1


def test_disrupt_hosts_fails_fast():
    executor = FakeExecutor()
    with pytest.raises(NoHostsError):
        disrupt_hosts(executor, [], RebootDisruption())
    with pytest.raises(InvalidBudgetError):
        disrupt_hosts(executor, ["node1"], RebootDisruption(),
                      max_disruption="lots")
    assert executor.commands == {}
