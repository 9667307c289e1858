from logzero import logger
from typing import Optional, Union

from chaoscluster.actions.cluster import Cluster
from chaoscluster.common import (
    DEFAULT_CHAOS_INVENTORY_FILE,
    DEFAULT_CHAOS_SERVICE,
    DEFAULT_CHAOS_SSH_CONFIG_FILE,
    NodeSelection,
)
from chaoscluster.common.budget import resolve_budget
from chaoscluster.execute.execute import FabricExecutor, RemoteExecutor
from chaoscluster.probes.host import count_down_hosts


def _hosts(inventory_file, selection, executor):
    cluster = Cluster.from_inventory(inventory_file, executor)
    return cluster.hosts(selection)


def all_nodes_active(inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                     selection: str = NodeSelection.ALL.value,
                     service: str = DEFAULT_CHAOS_SERVICE,
                     ssh_config_file: str = DEFAULT_CHAOS_SSH_CONFIG_FILE,
                     executor: Optional[RemoteExecutor] = None) -> bool:
    """
    Is `service` active on every selected node?

    :param inventory_file: The relative or absolute path to the cluster
        inventory. Optional.
    :type inventory_file: str
    :param selection: 'all', 'masters' or 'workers'. Optional.
    :type selection: str
    :param service: Service whose state tells whether a node is up.
    :type service: str
    :param ssh_config_file: The relative or absolute path to the SSH config
        file. Optional.
    :type ssh_config_file: str
    :return: bool
    """
    if executor is None:
        executor = FabricExecutor(ssh_config_file=ssh_config_file)
    hosts = _hosts(inventory_file, selection, executor)
    down = count_down_hosts(executor, hosts, service=service)
    logger.debug("are_alive: %d count: %d", len(hosts) - down, len(hosts))
    return down == 0


def nodes_down_within_budget(inventory_file: str = DEFAULT_CHAOS_INVENTORY_FILE,
                             max_disruption: Union[str, int] = 1,
                             selection: str = NodeSelection.ALL.value,
                             service: str = DEFAULT_CHAOS_SERVICE,
                             ssh_config_file: str =
                             DEFAULT_CHAOS_SSH_CONFIG_FILE,
                             executor: Optional[RemoteExecutor] = None
                             ) -> bool:
    """
    Are no more than `max_disruption` selected nodes down right now?

    Meant to be polled while a disruption batch is running.

    :param max_disruption: A count ('3') or a percentage ('30%') of the
        selected nodes. Optional. (Default: 1)
    :type max_disruption: Union[str, int]
    :return: bool
    """
    if executor is None:
        executor = FabricExecutor(ssh_config_file=ssh_config_file)
    hosts = _hosts(inventory_file, selection, executor)
    allowed = resolve_budget(max_disruption, len(hosts))
    down = count_down_hosts(executor, hosts, service=service)
    if down > allowed:
        logger.error("%d nodes down, more than the %d allowed", down, allowed)
        return False
    return True
