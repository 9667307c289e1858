import random

from logzero import logger
from typing import List, Optional, Union

from chaoscluster.common import (
    DEFAULT_CHAOS_INVENTORY_FILE,
    DEFAULT_CHAOS_MAX_DISRUPTION,
    DEFAULT_CHAOS_NETWORK_INTERFACE,
    DEFAULT_CHAOS_NETWORK_STALL,
    DEFAULT_CHAOS_PANIC_REBOOT_DELAY,
    DEFAULT_CHAOS_POLL_INTERVAL,
    DEFAULT_CHAOS_POLL_TIMEOUT,
    DEFAULT_CHAOS_SERVICE,
    DEFAULT_CHAOS_SSH_CONFIG_FILE,
    NodeSelection,
    to_seconds,
)
from chaoscluster.actions.disruption import (
    DISRUPTIONS,
    Disruption,
    KernelPanicDisruption,
    NetworkStallDisruption,
    RebootDisruption,
    disrupt_hosts,
)
from chaoscluster.common.budget import ConcurrencyBudget
from chaoscluster.common.errors import ChaosClusterError
from chaoscluster.common.inventory import (
    Node,
    hosts_from_nodes,
    load_inventory,
)
from chaoscluster.common.poll import DEFAULT_POLL_SPEC, PollSpec
from chaoscluster.execute.execute import FabricExecutor, RemoteExecutor
from chaoscluster.execute.scheduler import BatchResult
from chaoscluster.helpers import retry
from chaoscluster.probes.host import host_is_active


class Cluster(object):
    """
    The master and worker nodes of a cluster, and ways to disrupt them.

    max_disruption bounds how many nodes are disrupted in parallel. It
    accepts a count (3, '3') or a percentage ('30%') and defaults to 100%.
    """

    def __init__(self, executor: RemoteExecutor,
                 masters: Optional[List[Node]] = None,
                 workers: Optional[List[Node]] = None,
                 max_disruption: Union[ConcurrencyBudget, int, str] =
                 DEFAULT_CHAOS_MAX_DISRUPTION,
                 poll: PollSpec = DEFAULT_POLL_SPEC,
                 rng: Optional[random.Random] = None):
        self.executor = executor
        self.masters = list(masters or [])
        self.workers = list(workers or [])
        self.max_disruption = ConcurrencyBudget.parse(max_disruption)
        self.poll = poll
        self.rng = rng

    @classmethod
    def from_inventory(cls, inventory_file: str, executor: RemoteExecutor,
                       **kwargs) -> 'Cluster':
        masters, workers = load_inventory(inventory_file)
        return cls(executor, masters=masters, workers=workers, **kwargs)

    def hosts(self, selection: Union[NodeSelection, str] = NodeSelection.ALL
              ) -> List[str]:
        selection = NodeSelection(selection)
        nodes = []
        if selection in (NodeSelection.ALL, NodeSelection.MASTERS):
            nodes.extend(self.masters)
        if selection in (NodeSelection.ALL, NodeSelection.WORKERS):
            nodes.extend(self.workers)
        return hosts_from_nodes(nodes)

    def disrupt(self, disruption: Disruption,
                selection: Union[NodeSelection, str] = NodeSelection.ALL,
                recovery_window: Union[str, int, float] = 0) -> BatchResult:
        """
        Disrupt the selected nodes and raise AggregateError if any failed.
        """
        result = disrupt_hosts(self.executor, self.hosts(selection),
                               disruption,
                               max_disruption=self.max_disruption,
                               recovery_window=recovery_window,
                               poll=self.poll, rng=self.rng)
        result.raise_on_error()
        return result

    def disrupt_all(self, disruption: Disruption,
                    recovery_window: Union[str, int, float] = 0) -> BatchResult:
        return self.disrupt(disruption, NodeSelection.ALL, recovery_window)

    def disrupt_masters(self, disruption: Disruption,
                        recovery_window: Union[str, int, float] = 0
                        ) -> BatchResult:
        return self.disrupt(disruption, NodeSelection.MASTERS,
                            recovery_window)

    def disrupt_workers(self, disruption: Disruption,
                        recovery_window: Union[str, int, float] = 0
                        ) -> BatchResult:
        return self.disrupt(disruption, NodeSelection.WORKERS,
                            recovery_window)

    def reboot_all(self, recovery_window: Union[str, int, float] = 0,
                   service: str = DEFAULT_CHAOS_SERVICE) -> BatchResult:
        return self.disrupt_all(RebootDisruption(service=service),
                                recovery_window)

    def reboot_masters(self, recovery_window: Union[str, int, float] = 0,
                       service: str = DEFAULT_CHAOS_SERVICE) -> BatchResult:
        return self.disrupt_masters(RebootDisruption(service=service),
                                    recovery_window)

    def reboot_workers(self, recovery_window: Union[str, int, float] = 0,
                       service: str = DEFAULT_CHAOS_SERVICE) -> BatchResult:
        return self.disrupt_workers(RebootDisruption(service=service),
                                    recovery_window)

    def wait_until_ready(self, attempts: int = 50, delay: float = 10,
                         service: str = DEFAULT_CHAOS_SERVICE):
        """
        Block until at least one node of the cluster has `service` active.
        """
        hosts = self.hosts()

        def ready():
            for host in hosts:
                try:
                    if host_is_active(self.executor, host, service=service):
                        return
                except ChaosClusterError as e:
                    logger.debug("node: %s not ready: %s", host, e)
            raise ChaosClusterError("waiting for at least one node to be "
                                    "ready")

        retry(attempts, delay, ready)


def disrupt_nodes(disruption: str = RebootDisruption.name,
                  inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                  selection: str = NodeSelection.ALL.value,
                  max_disruption: Union[str, int] = DEFAULT_CHAOS_MAX_DISRUPTION,
                  recovery_window: Union[str, int] = 0,
                  service: str = DEFAULT_CHAOS_SERVICE,
                  interface: str = DEFAULT_CHAOS_NETWORK_INTERFACE,
                  poll_interval: Union[str, int] = DEFAULT_CHAOS_POLL_INTERVAL,
                  poll_timeout: Union[str, int] = DEFAULT_CHAOS_POLL_TIMEOUT,
                  ssh_config_file: str = DEFAULT_CHAOS_SSH_CONFIG_FILE,
                  executor: Optional[RemoteExecutor] = None,
                  **disruption_kwargs) -> bool:
    """
    Disrupt the nodes of a cluster and wait for them to recover.

    Returns True if every selected node went down and came back up.
    Otherwise, logs every failed node and returns False.

    :param disruption: One of 'reboot', 'kernel-panic' or 'network-stall'.
        Optional. (Default: 'reboot')
    :type disruption: str
    :param inventory_file: The relative or absolute path to the cluster
        inventory (one JSON document per node).
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_INVENTORY_FILE)
    :type inventory_file: str
    :param selection: Which nodes to disrupt: 'all', 'masters' or 'workers'.
        Optional. (Default: 'all')
    :type selection: str
    :param max_disruption: Maximum number of nodes disrupted in parallel, as a
        count ('3') or a percentage of the selected nodes ('30%').
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_MAX_DISRUPTION)
    :type max_disruption: Union[str, int]
    :param recovery_window: Seconds each node is kept down before checking
        it recovered. Optional. (Default: 0)
    :type recovery_window: Union[str, int]
    :param service: Service whose state tells whether a node is up.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_SERVICE)
    :type service: str
    :param interface: Network interface taken down by the disruption.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_NETWORK_INTERFACE)
    :type interface: str
    :param poll_interval: Seconds between two liveness probes.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_POLL_INTERVAL)
    :type poll_interval: Union[str, int]
    :param poll_timeout: Seconds to wait for a node to go down, and again
        for it to come back up.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_POLL_TIMEOUT)
    :type poll_timeout: Union[str, int]
    :param ssh_config_file: The relative or absolute path to the SSH config
        file.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_SSH_CONFIG_FILE)
    :type ssh_config_file: str
    :return: bool
    """
    logger.info("%s nodes: selection >%s< max disruption >%s< recovery "
                "window >%s seconds<", disruption, selection, max_disruption,
                recovery_window)
    try:
        disruption_cls = DISRUPTIONS[disruption]
    except KeyError:
        logger.error("Unknown disruption %s. Expected one of: %s", disruption,
                     ", ".join(sorted(DISRUPTIONS)))
        return False
    if not NodeSelection.has_value(selection):
        logger.error("Unknown node selection %s. Expected one of: %s",
                     selection, ", ".join(s.value for s in NodeSelection))
        return False

    try:
        poll = PollSpec(to_seconds(poll_interval, 'poll_interval'),
                        to_seconds(poll_timeout, 'poll_timeout'))
        if executor is None:
            executor = FabricExecutor(ssh_config_file=ssh_config_file)
        cluster = Cluster.from_inventory(inventory_file, executor,
                                         max_disruption=max_disruption,
                                         poll=poll)
        result = cluster.disrupt(
            disruption_cls(interface=interface, service=service,
                           **disruption_kwargs),
            selection, recovery_window)
    except ChaosClusterError as e:
        for error in getattr(e, 'errors', [e]):
            logger.error("%s", error)
        return False
    except Exception as e:
        logger.exception(e)
        return False

    logger.info("%s of %d nodes successful", disruption, len(result.hosts))
    return True


def reboot_nodes(inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                 selection: str = NodeSelection.ALL.value,
                 max_disruption: Union[str, int] = DEFAULT_CHAOS_MAX_DISRUPTION,
                 recovery_window: Union[str, int] = 0,
                 ssh_config_file: str = DEFAULT_CHAOS_SSH_CONFIG_FILE,
                 **kwargs) -> bool:
    """
    Reboot the selected nodes, at most `max_disruption` at a time.

    See disrupt_nodes for the remaining parameters.

    :return: bool
    """
    return disrupt_nodes(RebootDisruption.name, inventory_file, selection,
                         max_disruption, recovery_window,
                         ssh_config_file=ssh_config_file, **kwargs)


def kernel_panic_nodes(inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                       selection: str = NodeSelection.ALL.value,
                       max_disruption: Union[str, int] =
                       DEFAULT_CHAOS_MAX_DISRUPTION,
                       recovery_window: Union[str, int] = 0,
                       reboot_delay: Union[str, int] =
                       DEFAULT_CHAOS_PANIC_REBOOT_DELAY,
                       ssh_config_file: str = DEFAULT_CHAOS_SSH_CONFIG_FILE,
                       **kwargs) -> bool:
    """
    Panic the kernel of the selected nodes and wait for them to come back.

    :param reboot_delay: Seconds after the panic the kernel reboots itself
        when no recovery window is given.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_PANIC_REBOOT_DELAY)
    :type reboot_delay: Union[str, int]
    :return: bool
    """
    return disrupt_nodes(KernelPanicDisruption.name, inventory_file, selection,
                         max_disruption, recovery_window,
                         ssh_config_file=ssh_config_file,
                         reboot_delay=reboot_delay, **kwargs)


def stall_network_nodes(inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                        selection: str = NodeSelection.ALL.value,
                        max_disruption: Union[str, int] =
                        DEFAULT_CHAOS_MAX_DISRUPTION,
                        stall: Union[str, int] = DEFAULT_CHAOS_NETWORK_STALL,
                        ssh_config_file: str = DEFAULT_CHAOS_SSH_CONFIG_FILE,
                        **kwargs) -> bool:
    """
    Cut the network of the selected nodes for `stall` seconds.

    The stall runs on the node itself, so no recovery window is added on top
    of it.

    :param stall: Seconds the network interface stays down.
        Optional. (Default: chaoscluster.common.DEFAULT_CHAOS_NETWORK_STALL)
    :type stall: Union[str, int]
    :return: bool
    """
    return disrupt_nodes(NetworkStallDisruption.name, inventory_file, selection,
                         max_disruption, 0,
                         ssh_config_file=ssh_config_file, stall=stall,
                         **kwargs)
