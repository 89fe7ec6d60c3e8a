"""
In-process network: semua nodes dalam satu process.

Berguna untuk development dan testing tanpa port HTTP.
Delivery dilakukan langsung ke receive_vote() milik node tujuan.
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Dict, Any, Set, List
import logging

from .message_passing import VoteBroadcaster, VoteMessage
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass
class NetworkConfig:
    """Konfigurasi network simulasi"""
    latency_ms: int = 0  # Latency per delivery
    failure_rate: float = 0.0  # Probability delivery gagal (0.0 - 1.0)


class LocalNetwork:
    """
    Registry nodes dalam satu process.
    Handler harus punya method receive_vote(VoteMessage) -> bool.
    """

    def __init__(self, config: NetworkConfig = None):
        self.config = config or NetworkConfig()

        # Map: node_id -> handler
        self.nodes: Dict[int, Any] = {}

        # Link yang di-putus (simulasi partition)
        self.failed_nodes: Set[int] = set()

    def register_node(self, node_id: int, handler):
        """Register node di network"""
        self.nodes[node_id] = handler
        self.failed_nodes.discard(node_id)
        logger.debug(f"Node {node_id} registered in local network")

    def simulate_node_failure(self, node_id: int):
        """Semua delivery ke node ini akan gagal"""
        self.failed_nodes.add(node_id)
        logger.info(f"Node {node_id} marked unreachable")

    def simulate_node_recovery(self, node_id: int):
        if node_id in self.failed_nodes:
            self.failed_nodes.remove(node_id)
            logger.info(f"Node {node_id} reachable again")

    async def deliver(self, dest_id: int, message: VoteMessage) -> bool:
        """
        Deliver vote ke node tujuan.

        Returns:
            True jika diterima, False jika gagal (swallowed)
        """
        if self.config.latency_ms > 0:
            await asyncio.sleep(self.config.latency_ms / 1000.0)

        if self.config.failure_rate > 0 and random.random() < self.config.failure_rate:
            logger.debug(f"Simulated drop of {message} to node {dest_id}")
            return False

        if dest_id in self.failed_nodes or dest_id not in self.nodes:
            return False

        return self.nodes[dest_id].receive_vote(message)

    def transport_for(self, node_id: int) -> 'LocalTransport':
        return LocalTransport(self, node_id)


class LocalTransport(VoteBroadcaster):
    """Broadcaster untuk satu node di LocalNetwork"""

    def __init__(self, network: LocalNetwork, node_id: int):
        self.network = network
        self.node_id = node_id

        # Statistics
        self.messages_sent = 0
        self.failed_sends = 0

    def _targets(self) -> List[int]:
        return [i for i in sorted(self.network.nodes) if i != self.node_id]

    async def broadcast_vote(self, phase: int, round: int, value: int) -> int:
        message = VoteMessage(sender_id=self.node_id, phase=phase, round=round, value=value)
        targets = self._targets()

        delivered = 0
        for dest_id in targets:
            if await self.network.deliver(dest_id, message):
                delivered += 1

        self.messages_sent += delivered
        self.failed_sends += len(targets) - delivered

        metrics.record_broadcast(self.node_id, phase, failed=len(targets) - delivered)
        return delivered

    def get_stats(self) -> Dict[str, int]:
        return {
            'messages_sent': self.messages_sent,
            'failed_sends': self.failed_sends
        }
