"""
Launcher untuk consensus network.

Menjalankan N nodes (HTTP atau in-process), tracking readiness,
dan menyediakan client untuk drive start/stop/getState ke semua nodes.
"""

import asyncio
import aiohttp
import logging
from typing import Dict, Any, Optional, List, Sequence, Union

from .benor_node import BenOrNode
from ..communication.local_network import LocalNetwork, NetworkConfig
from ..consensus.ben_or import ConsensusState
from ..utils.config import Config

logger = logging.getLogger(__name__)


class ReadinessTracker:
    """Tracking node mana yang sudah siap menerima request"""

    def __init__(self, total_nodes: int):
        self.total_nodes = total_nodes
        self.ready = [False] * total_nodes

    def set_node_is_ready(self, node_id: int):
        self.ready[node_id] = True
        logger.debug(f"Node {node_id} is ready")

    def nodes_are_ready(self) -> bool:
        return all(self.ready)

    async def wait_until_ready(self, timeout: float = 5.0) -> bool:
        """
        Wait sampai semua nodes ready.

        Returns:
            True jika semua ready, False jika timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            if self.nodes_are_ready():
                return True
            await asyncio.sleep(0.05)

        return self.nodes_are_ready()


async def launch_nodes(n: int,
                       f: int,
                       initial_values: Sequence[Union[int, str]],
                       faulty_list: Sequence[bool],
                       transport: str = 'http',
                       host: Optional[str] = None,
                       base_port: Optional[int] = None,
                       network_config: Optional[NetworkConfig] = None,
                       **node_options) -> List[BenOrNode]:
    """
    Launch N nodes.

    Args:
        n: Total nodes
        f: Fault bound (jumlah True di faulty_list tidak boleh lebih dari f)
        initial_values: Initial value per node (0, 1, atau "?")
        faulty_list: Faulty flag per node
        transport: "http" (satu aiohttp server per node) atau "local"
        host: Host address untuk HTTP nodes
        base_port: Port node 0, node i di base_port + i
        network_config: Latency/drop rate untuk transport "local"
        **node_options: Diteruskan ke BenOrNode (round_cap, quorum_timeout, ...)

    Returns:
        List of started nodes

    Raises:
        ValueError: jika arguments tidak konsisten
        RuntimeError: jika nodes tidak ready tepat waktu

    Jika startup gagal di tengah jalan, nodes yang sudah jalan di-stop dulu.
    """
    if len(initial_values) != n:
        raise ValueError(f"Expected {n} initial values, got {len(initial_values)}")
    if len(faulty_list) != n:
        raise ValueError(f"Expected {n} faulty flags, got {len(faulty_list)}")
    if sum(1 for faulty in faulty_list if faulty) > f:
        raise ValueError("faulty_list has more than F faulty nodes")
    if transport not in ('http', 'local'):
        raise ValueError(f"Unknown transport: {transport}")

    host = host or Config.NODE_HOST
    base_port = base_port if base_port is not None else Config.BASE_NODE_PORT

    readiness = ReadinessTracker(n)
    network = LocalNetwork(network_config) if transport == 'local' else None
    nodes = []

    try:
        for i in range(n):
            if network is not None:
                node = BenOrNode(i, n, f, initial_values[i], faulty=faulty_list[i],
                                 transport=network.transport_for(i), **node_options)
                network.register_node(i, node)
                readiness.set_node_is_ready(i)
                nodes.append(node)
            else:
                peers = [f"{host}:{base_port + j}" for j in range(n) if j != i]
                node = BenOrNode(i, n, f, initial_values[i], faulty=faulty_list[i],
                                 host=host, port=base_port + i, peers=peers,
                                 on_ready=readiness.set_node_is_ready, **node_options)
                nodes.append(node)
                await node.start()

        if not await readiness.wait_until_ready():
            raise RuntimeError("Nodes did not become ready in time")
    except Exception as e:
        logger.error(f"Launch failed: {e}, stopping {len(nodes)} nodes")
        await shutdown_nodes(nodes)
        raise

    logger.info(f"Launched {n} nodes (F={f}, transport={transport})")
    return nodes


async def shutdown_nodes(nodes: List[BenOrNode]):
    """Stop semua nodes dan cleanup"""
    for node in nodes:
        await node.stop()


class ClusterClient:
    """
    HTTP client untuk drive semua nodes dari luar (test harness).
    """

    def __init__(self, total_nodes: int, host: Optional[str] = None,
                 base_port: Optional[int] = None, timeout: float = 5.0):
        self.total_nodes = total_nodes
        self.host = host or Config.NODE_HOST
        self.base_port = base_port if base_port is not None else Config.BASE_NODE_PORT
        self.session: Optional[aiohttp.ClientSession] = None
        self.timeout = timeout

    async def __aenter__(self) -> 'ClusterClient':
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    def _url(self, node_id: int, endpoint: str) -> str:
        return f"http://{self.host}:{self.base_port + node_id}/{endpoint}"

    async def _get_all(self, endpoint: str) -> List[aiohttp.ClientResponse]:
        async def fetch(node_id: int):
            async with self.session.get(self._url(node_id, endpoint)) as response:
                await response.read()
                return response

        return await asyncio.gather(*(fetch(i) for i in range(self.total_nodes)))

    async def start_all(self) -> List[int]:
        """GET /start ke semua nodes. Returns: status code per node"""
        return [r.status for r in await self._get_all('start')]

    async def stop_all(self) -> List[int]:
        """GET /stop ke semua nodes. Returns: status code per node"""
        return [r.status for r in await self._get_all('stop')]

    async def statuses(self) -> List[str]:
        responses = await self._get_all('status')
        return [await r.text() for r in responses]

    async def get_states(self) -> List[Dict[str, Any]]:
        responses = await self._get_all('getState')
        return [await r.json() for r in responses]


def is_finished(state: Dict[str, Any], round_cap: int) -> bool:
    """Node selesai jika decided, frozen/faulty, atau sudah mencapai round cap"""
    if state.get('decided') is None or state.get('decided') is True:
        return True
    return state.get('k') is not None and state['k'] >= round_cap


async def wait_for_decisions(client: ClusterClient,
                             round_cap: Optional[int] = None,
                             timeout: float = 10.0,
                             interval: float = 0.1) -> List[Dict[str, Any]]:
    """
    Poll getState sampai semua nodes selesai atau timeout.

    Returns:
        States terakhir dari semua nodes
    """
    round_cap = round_cap if round_cap is not None else Config.ROUND_CAP
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    states = await client.get_states()
    while not all(is_finished(s, round_cap) for s in states):
        if loop.time() >= deadline:
            logger.warning("Timeout waiting for decisions")
            break
        await asyncio.sleep(interval)
        states = await client.get_states()

    return states


async def wait_for_local_decisions(nodes: List[BenOrNode],
                                   timeout: float = 10.0,
                                   interval: float = 0.05) -> List[Dict[str, Any]]:
    """Sama seperti wait_for_decisions, tanpa HTTP"""

    def snapshot():
        return [node.get_state() or ConsensusState.unknown() for node in nodes]

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    states = snapshot()
    while not all(is_finished(s, node.round_cap) for s, node in zip(states, nodes)):
        if loop.time() >= deadline:
            logger.warning("Timeout waiting for decisions")
            break
        await asyncio.sleep(interval)
        states = snapshot()

    return states
