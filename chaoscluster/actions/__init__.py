"""
Chaos 'actions' module.

This module contains *actions* that disrupt the nodes of a cluster.

By design, chaostoolkit runs an experiment if and only if 'steady state' is met.
Steady state is composed of one or more 'probes'. When the steady state is met,
the 'method' of the experiment will execute. An experiment's 'method' is
composed of a list of one or more '*actions*' that introduce 'chaos' into the
cluster.

Faults, failures, and exceptions encountered while executing an *action* do
NOT cause an experiment to fail. The experiment facing *actions* return False
and log every node that failed; inspect the experiment's journal to decide if
an experiment truely 'succeeded' or 'failed'.

*Actions* applied to a cluster should not cause predicatable failure. If every
node is rebooted at once, expect the cluster to be unavailable for a while;
use max_disruption to keep part of the cluster up.
"""
