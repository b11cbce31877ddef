"""
vmcli — provision, inspect, and tear down small VM clusters.

Drives the cloud provider's command-line tool to converge one fixed
network topology per cluster (network, subnet, gateway, route table,
firewall group, keypair) plus any number of named instances, and
diagnoses why an instance might not be reachable over SSH.
"""

import os

__version__ = "0.1.0"

CONFIG_HOME = os.environ.get("VMCLI_CONFIG_HOME", "~/.config/vmcli")
