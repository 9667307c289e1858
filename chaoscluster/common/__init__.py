import tempfile
from enum import Enum
from logzero import logger
from os import makedirs
from psutil import Process, NoSuchProcess

from typing import Union

def get_chaos_temp_dir() -> str:
    """
    Create a temporary directory unique to each chaos experiment.

    The temporary directory will take the form <tempdir>/chaoscluster.<pid>
    The <pid> will be the chaos processe's pid iff it exists. Otherwise, the
    subprocess's pid.

    :return: str
    """
    # Get current process info
    myp = Process()
    subprocess_pid = myp.pid
    chaos_pid = None
    # Walk all the way up the process tree
    while(1):
        #  Break when we find the 'chaos' process
        if myp.name() == 'chaos':
            logger.debug("Found 'chaos' process")
            chaos_pid = myp.pid
            break
        try:
            parent = myp.parent()
        except NoSuchProcess:
            parent = None
        if parent is None:
            logger.info("Did not find chaos pid before traversing all the way"
                        " to the top of the process tree! Defaulting to %s",
                        subprocess_pid)
            chaos_pid = subprocess_pid
            break
        myp = parent
        logger.debug("myp.name=%s", myp.name())

    logger.debug("subprocess pid: %s chaos pid: %s", subprocess_pid, chaos_pid)
    tempdir_path = "{}/chaoscluster.{}".format(tempfile.gettempdir(), chaos_pid)
    makedirs(tempdir_path, exist_ok=True)
    logger.debug("tempdir: %s", tempdir_path)
    return tempdir_path


def to_seconds(value: Union[str, int, float], name: str = "value") -> float:
    """
    Convert an experiment parameter to a number of seconds.

    Chaos toolkit experiments pass every argument as a string or int. Negative
    values are rejected.

    :param value: Number of seconds. Required.
    :type value: Union[str, int, float]
    :param name: Parameter name used in the error message.
    :type name: str
    :return: float
    """
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        raise ValueError("{} must be a number of seconds, got {!r}".format(
            name, value))
    if seconds < 0:
        raise ValueError("{} must not be negative, got {!r}".format(name,
                                                                    value))
    return seconds


class NodeRole(Enum):
    """
    All node roles a cluster inventory may contain.
    """
    MASTER = 'master'
    WORKER = 'worker'

    @classmethod
    def has_value(cls, value):
        return any(value == item.value for item in cls)


# Node selections accepted by the experiment facing actions.
class NodeSelection(Enum):
    """
    All supported node selections.
    """
    ALL = 'all'
    MASTERS = 'masters'
    WORKERS = 'workers'

    @classmethod
    def has_value(cls, value):
        return any(value == item.value for item in cls)


# Chaos defaults
# Please keep defaults in lexically acending order by name
DEFAULT_CHAOS_CONNECT_TIMEOUT=30
DEFAULT_CHAOS_INVENTORY_FILE="~/cluster_inventory"
DEFAULT_CHAOS_MAX_DISRUPTION="100%"
DEFAULT_CHAOS_NETWORK_INTERFACE="eth0"
DEFAULT_CHAOS_NETWORK_STALL=60
DEFAULT_CHAOS_PANIC_REBOOT_DELAY=10
DEFAULT_CHAOS_POLL_INTERVAL=10
DEFAULT_CHAOS_POLL_TIMEOUT=60
DEFAULT_CHAOS_PROBE_TIMEOUT=10
DEFAULT_CHAOS_SERVICE="kubelet"
DEFAULT_CHAOS_SSH_CONFIG_FILE="~/.ssh/config"
DEFAULT_CHAOS_TRIGGER_DELAY=10
