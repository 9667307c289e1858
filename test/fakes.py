import threading

from collections import defaultdict

from chaoscluster.common.errors import HostUnreachableError
from chaoscluster.execute.execute import (
    EXIT_STATUS_MISSING,
    RemoteExecutor,
    Result,
)


class FakeExecutor(RemoteExecutor):
    """In-memory hosts that go down when a disruption is triggered.

    After a trigger a host answers `down_for` liveness probes as unreachable
    and is active again afterwards.
    """

    def __init__(self, down_for=2, trigger_result=None):
        self.down_for = down_for
        self.trigger_result = trigger_result or Result(EXIT_STATUS_MISSING,
                                                       "", "")
        self.failing_trigger = set()
        self.never_down = set()
        self.never_up = set()
        self.inactive = set()
        self.commands = defaultdict(list)
        self.puts = defaultdict(list)
        self._remaining_down = defaultdict(int)
        self._lock = threading.Lock()

    def _execute_on_host(self, host, action, user=None, as_sudo=False,
                         **kwargs):
        with self._lock:
            self.commands[host].append(action)
            if action.startswith("nohup"):
                if host in self.failing_trigger:
                    return Result(1, "", "sudo: a password is required")
                if host not in self.never_down:
                    self._remaining_down[host] = self.down_for
                return self.trigger_result
            if action.startswith("systemctl is-active"):
                if host in self.never_up and self._remaining_down[host]:
                    raise HostUnreachableError(host, "connection refused")
                if self._remaining_down[host] > 0:
                    self._remaining_down[host] -= 1
                    raise HostUnreachableError(host, "connection refused")
                if host in self.inactive:
                    return Result(3, "inactive\n", "")
                return Result(0, "active\n", "")
            return Result(0, "", "")

    def _put_on_host(self, host, local_path, remote_path, user=None,
                     as_sudo=False):
        with open(local_path) as f:
            content = f.read()
        with self._lock:
            self.puts[host].append((remote_path, content, as_sudo))
            self.commands[host].append("put {}".format(remote_path))
        return Result(0, "", "")


class FakeClock(object):
    """A clock that only moves when sleep is called."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
