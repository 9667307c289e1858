import json

from collections import namedtuple
from logzero import logger
from os.path import expanduser
from typing import Dict, List, Tuple

from chaoscluster.common import NodeRole
from chaoscluster.common.errors import NodeClassificationError

Node = namedtuple('Node', ['name', 'address', 'role'])

# Labels set on cluster nodes by the control plane
MASTER_LABELS = (
    'node-role.kubernetes.io/master',
    'node-role.kubernetes.io/control-plane',
)
WORKER_LABELS = (
    'node-role.kubernetes.io/worker',
    'node-role.kubernetes.io/node',
)


def classify_node(node_info: Dict) -> NodeRole:
    """
    Decide whether an inventory entry describes a master or a worker.

    An explicit 'role' wins over 'labels'.

    :param node_info: One decoded inventory entry.
    :type node_info: Dict
    :return: NodeRole
    """
    name = node_info.get('name', '<unnamed>')
    role = node_info.get('role')
    if role is not None:
        role = str(role).lower()
        if role == 'control-plane':
            role = NodeRole.MASTER.value
        if NodeRole.has_value(role):
            return NodeRole(role)
        raise NodeClassificationError(
            "node: {} has unknown role {!r}".format(name, node_info['role']))

    labels = node_info.get('labels') or {}
    if any(label in labels for label in MASTER_LABELS):
        return NodeRole.MASTER
    if any(label in labels for label in WORKER_LABELS):
        return NodeRole.WORKER
    raise NodeClassificationError(
        "node: {} is neither master nor worker".format(name))


def load_inventory(inventory_file: str) -> Tuple[List[Node], List[Node]]:
    """
    Read a cluster inventory and split it into masters and workers.

    The inventory holds one JSON document per line:
        {"name": "node1", "address": "10.0.0.1", "role": "master"}
        {"name": "node2", "address": "10.0.0.2",
         "labels": {"node-role.kubernetes.io/worker": ""}}

    Any node that can not be classified is a hard error.

    :param inventory_file: The relative or absolute path to the inventory.
        Required.
    :type inventory_file: str
    :return: Tuple[List[Node], List[Node]] (masters, workers)
    """
    masters = []
    workers = []
    with open(expanduser(inventory_file), 'r') as inventory:
        for line in inventory:
            if not line.strip():
                continue
            node_info = json.loads(line)
            role = classify_node(node_info)
            node = Node(node_info.get('name'), node_info.get('address'), role)
            if role is NodeRole.MASTER:
                masters.append(node)
            else:
                workers.append(node)
    logger.debug("inventory %s: masters: %s workers: %s", inventory_file,
                 [n.name for n in masters], [n.name for n in workers])
    return masters, workers


def hosts_from_nodes(nodes: List[Node]) -> List[str]:
    """
    Return the addresses of the nodes that can be reached.

    Nodes without an address are logged and left out.
    """
    hosts = []
    for node in nodes:
        if not node.address:
            logger.error("node: %s has no address, will not be disrupted",
                         node.name)
            continue
        hosts.append(node.address)
    return hosts
