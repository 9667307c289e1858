"""
Exceptions raised by chaoscluster.

Everything derives from ChaosClusterError. Per-host failures derive from
HostError and carry the host and the step of the disruption sequence that
failed. A batch of per-host failures is reported as a single AggregateError.
"""
from typing import Iterable, List, Optional


class ChaosClusterError(Exception):
    pass


class NoHostsError(ChaosClusterError):
    """The set of hosts to disrupt is empty."""

    def __init__(self, message: str = "no hosts found that can be disrupted"):
        super().__init__(message)


class InvalidBudgetError(ChaosClusterError, ValueError):
    """A concurrency budget could not be interpreted."""


class NodeClassificationError(ChaosClusterError):
    """A node in the inventory is neither a master nor a worker."""


class AuthenticationError(ChaosClusterError):
    """The remote host rejected our credentials."""


class TransportError(ChaosClusterError):
    """
    The remote command could not be carried to or from the host.

    Pollers treat these as "not yet" because a host that is rebooting is
    expected to be unreachable for a while.
    """

    def __init__(self, host: str, message: str):
        super().__init__("host: {} {}".format(host, message))
        self.host = host


class HostUnreachableError(TransportError):
    pass


class RemoteTimeoutError(TransportError):
    pass


class PollTimeoutError(ChaosClusterError, TimeoutError):
    """A poll did not observe its condition before the timeout."""

    def __init__(self, timeout: float, attempts: int):
        super().__init__("timed out after {}s waiting for the condition "
                         "({} attempts)".format(timeout, attempts))
        self.timeout = timeout
        self.attempts = attempts


class HostError(ChaosClusterError):
    """A single host's disruption sequence failed at `step`."""

    step = "action"

    def __init__(self, host: str, message: str, step: Optional[str] = None):
        if step is not None:
            self.step = step
        super().__init__("node: {} {}".format(host, message))
        self.host = host


class HostActionError(HostError):
    pass


class CommandFailedError(HostError):
    step = "trigger"

    def __init__(self, host: str, command: str, result=None,
                 step: Optional[str] = None):
        stdout = result.stdout if result is not None else ""
        stderr = result.stderr if result is not None else ""
        super().__init__(host, "issuing command failed\ncommand:{}\n"
                         "stdout:{}\nstderr:{}".format(command, stdout, stderr),
                         step=step)
        self.command = command
        self.result = result


class HostDidNotGoDownError(HostError):
    step = "wait-for-down"

    def __init__(self, host: str):
        super().__init__(host, "didn't go down")


class HostDidNotRecoverError(HostError):
    step = "wait-for-up"

    def __init__(self, host: str):
        super().__init__(host, "didn't come back up")


class AggregateError(ChaosClusterError):
    """
    One error value wrapping every per-host failure of a batch.

    Use AggregateError.from_errors to build one; it returns None when there
    is nothing to aggregate, so an empty aggregate always means success.
    """

    def __init__(self, errors: Iterable[Exception]):
        self.errors = list(errors)  # type: List[Exception]
        if len(self.errors) == 1:
            message = str(self.errors[0])
        else:
            message = "[{}]".format(", ".join(str(e) for e in self.errors))
        super().__init__(message)

    @classmethod
    def from_errors(cls, errors: Iterable[Exception]) -> Optional['AggregateError']:
        errors = list(errors)
        if not errors:
            return None
        return cls(errors)

    @property
    def hosts(self) -> List[str]:
        return [getattr(e, 'host', None) for e in self.errors]

    def __len__(self):
        return len(self.errors)

    def __iter__(self):
        return iter(self.errors)
