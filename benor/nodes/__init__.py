"""Nodes package initialization"""

from .benor_node import BenOrNode
from .launcher import ClusterClient, ReadinessTracker, launch_nodes, shutdown_nodes

__all__ = ['BenOrNode', 'ClusterClient', 'ReadinessTracker', 'launch_nodes', 'shutdown_nodes']
