"""
chaoscluster module

This module contains:
 - actions that disrupt the nodes of a cluster (reboot, kernel panic, network
   stall) and wait for them to recover. (actions directory)
 - probes that check whether nodes are up. (probes directory)
 - helper functions (helpers.py file)
 - common files: defaults, errors, the node inventory, the concurrency budget
   and the poller (common directory)
 - A remote execution tool built on Python Fabric and a bounded parallel
   scheduler (execute directory).

Disrupting a set of nodes is a single blocking call. The nodes are visited in
a random order, at most `max_disruption` of them are disrupted at the same
time, and every node is disrupted exactly once. A node that fails to go down
or to come back up does not stop the others; all failures are reported
together once every node has finished.

Things to consider when adding or modifying actions and/or probes:
1. Actions and Probes could/may be used outside of Chaos experiments for other
   kinds of integration or systems testing. Therefore, actions should
   be written in a way they can reused outside of the context of the
   the chaostoolkit.
2. A disruption must leave the node able to recover on its own. Stage
   whatever it needs to come back (a timer, a sysctl) before triggering it.
"""
