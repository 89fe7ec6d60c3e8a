"""
Ben-Or Node.
Satu participant dalam consensus network:
- HTTP API server (status, message, start, stop, getState)
- Message ingestion ke vote logs
- Lifecycle control untuk round engine task
"""

import asyncio
import logging
from typing import Dict, Any, Optional, List, Callable, Union
from aiohttp import web

from ..consensus.ben_or import (
    BenOrEngine, ConsensusState, NodeIdentity, sanitize_initial_value
)
from ..consensus.vote_log import Phase, VoteLog, VoteRecord
from ..communication.message_passing import (
    MessagePassing, VoteBroadcaster, VoteMessage
)
from ..utils.config import Config
from ..utils.metrics import metrics, measure_time

logger = logging.getLogger(__name__)


@web.middleware
async def metrics_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Record request count dan latency per endpoint"""
    timer = measure_time()
    try:
        with timer:
            return await handler(request)
    finally:
        # Label pakai route template, bukan raw path (404 -> 'unknown')
        resource = request.match_info.route.resource
        endpoint = resource.canonical if resource is not None else 'unknown'
        metrics.record_request(request.method, endpoint, timer.elapsed)


class BenOrNode:
    """
    Node untuk Ben-Or consensus.

    State dimiliki node ini sendiri (tidak ada shared state antar nodes),
    sehingga beberapa nodes bisa jalan dalam satu process.
    """

    def __init__(self,
                 node_id: int,
                 n: int,
                 f: int,
                 initial_value: Union[int, str, None],
                 faulty: bool = False,
                 host: Optional[str] = None,
                 port: Optional[int] = None,
                 peers: Optional[List[str]] = None,
                 transport: Optional[VoteBroadcaster] = None,
                 round_cap: Optional[int] = None,
                 quorum_timeout: Optional[int] = None,
                 start_delay: Optional[int] = None,
                 fallback_value: Optional[int] = None,
                 deduplicate_votes: Optional[bool] = None,
                 count_own_vote: Optional[bool] = None,
                 on_ready: Optional[Callable[[int], None]] = None):
        """
        Args:
            node_id: ID node (0..N-1)
            n: Total nodes dalam network
            f: Jumlah faulty nodes
            initial_value: 0, 1, atau "?" (unknown)
            faulty: True jika node faulty secara permanen
            host: Host address (default Config.NODE_HOST)
            port: Port number (default BASE_NODE_PORT + node_id)
            peers: List of peer addresses ("host:port")
            transport: Broadcaster selain HTTP (contoh: LocalTransport)
            round_cap, quorum_timeout, start_delay, fallback_value,
            deduplicate_votes, count_own_vote: override Config
            on_ready: Callback saat HTTP server siap menerima request
        """
        self.identity = NodeIdentity(node_id=node_id, n=n, f=f, faulty=faulty)
        self.initial_value = sanitize_initial_value(initial_value, faulty)
        self.state = ConsensusState.initial(self.identity, self.initial_value)

        self.host = host or Config.NODE_HOST
        self.port = port if port is not None else Config.get_port(node_id)
        self.peers = peers if peers is not None else Config.get_peers(node_id, n)

        self.round_cap = round_cap if round_cap is not None else Config.ROUND_CAP
        self.quorum_timeout = quorum_timeout if quorum_timeout is not None else Config.QUORUM_TIMEOUT
        self.start_delay = (start_delay if start_delay is not None else Config.START_DELAY) / 1000
        self.fallback_value = fallback_value if fallback_value is not None else Config.FALLBACK_VALUE
        self.count_own_vote = count_own_vote if count_own_vote is not None else Config.COUNT_OWN_VOTE
        dedup = deduplicate_votes if deduplicate_votes is not None else Config.DEDUPLICATE_VOTES

        # Vote logs per phase
        self.phase1 = VoteLog(Phase.ONE, deduplicate=dedup)
        self.phase2 = VoteLog(Phase.TWO, deduplicate=dedup)

        # Transport
        self.mp = transport or MessagePassing(node_id, self.peers, Config.SEND_TIMEOUT)

        self.engine = self._create_engine()
        self._engine_task: Optional[asyncio.Task] = None
        self.on_ready = on_ready

        # HTTP server
        self.app = web.Application(middlewares=[metrics_middleware])
        self.runner: Optional[web.AppRunner] = None
        self.site: Optional[web.TCPSite] = None

        self._setup_routes()

        logger.info(f"BenOrNode {node_id} initialized (N={n}, F={f}, "
                    f"x={self.initial_value}, faulty={faulty})")

    @property
    def node_id(self) -> int:
        return self.identity.node_id

    @property
    def faulty(self) -> bool:
        return self.identity.faulty

    def _create_engine(self) -> BenOrEngine:
        return BenOrEngine(
            identity=self.identity,
            state=self.state,
            phase1_log=self.phase1,
            phase2_log=self.phase2,
            broadcaster=self.mp,
            round_cap=self.round_cap,
            quorum_timeout=self.quorum_timeout,
            fallback_value=self.fallback_value,
            count_own_vote=self.count_own_vote
        )

    def _setup_routes(self):
        """Setup HTTP API routes"""
        self.app.router.add_get('/status', self.handle_status)
        self.app.router.add_post('/message', self.handle_message)
        self.app.router.add_get('/start', self.handle_start)
        self.app.router.add_get('/stop', self.handle_stop)
        self.app.router.add_get('/getState', self.handle_get_state)
        self.app.router.add_get('/metrics', self.handle_metrics)
        self.app.router.add_get('/stats', self.handle_stats)

    # ------------------------------------------------------------------
    # Server lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """Start HTTP server dan transport"""
        logger.info(f"Starting node {self.node_id}...")

        if isinstance(self.mp, MessagePassing):
            await self.mp.initialize()

        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        self.site = web.TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Node {self.node_id} is listening on http://{self.host}:{self.port}")

        # Node siap menerima request
        if self.on_ready:
            self.on_ready(self.node_id)

    async def stop(self):
        """Stop engine task, HTTP server, dan transport"""
        logger.info(f"Stopping node {self.node_id}...")

        await self._cancel_engine()

        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            await self.runner.cleanup()
            self.runner = None
        if isinstance(self.mp, MessagePassing):
            await self.mp.close()

        logger.info(f"Node {self.node_id} stopped")

    # ------------------------------------------------------------------
    # Consensus lifecycle
    # ------------------------------------------------------------------

    def receive_vote(self, message: VoteMessage) -> bool:
        """
        Catat vote dari peer ke log phase yang sesuai.

        Returns:
            False jika node faulty atau killed (message ditolak)
        """
        if self.faulty or self.state.killed:
            metrics.record_rejected_vote(self.node_id, 'frozen')
            return False

        log = self.phase1 if message.phase == Phase.ONE else self.phase2
        record = VoteRecord(sender=message.sender_id, round=message.round, value=message.value)

        if log.add(record):
            metrics.record_vote(self.node_id, message.phase)
        else:
            metrics.record_rejected_vote(self.node_id, 'duplicate')
        return True

    async def start_consensus(self) -> bool:
        """
        Reset state ke round 0, clear logs, dan jadwalkan round engine.

        Returns:
            False jika node killed atau faulty
        """
        if self.state.killed or self.faulty:
            return False

        await self._cancel_engine()

        self.state.reset(self.initial_value)
        self.phase1.clear()
        self.phase2.clear()

        self.engine = self._create_engine()
        self._engine_task = asyncio.create_task(self._run_engine())

        logger.info(f"Node {self.node_id}: consensus started with x={self.state.x}")
        return True

    async def stop_consensus(self) -> bool:
        """
        Freeze node: killed=True, decided=None. Logs tidak di-clear.
        Idempotent.

        Returns:
            False jika node faulty
        """
        if self.faulty:
            return False

        self.state.freeze()
        await self._cancel_engine()

        logger.info(f"Node {self.node_id}: consensus stopped (x={self.state.x}, k={self.state.k})")
        return True

    async def _run_engine(self):
        try:
            if self.start_delay > 0:
                await asyncio.sleep(self.start_delay)
            await self.engine.run()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Node {self.node_id}: error in round engine: {e}")

    async def _cancel_engine(self):
        task = self._engine_task
        self._engine_task = None

        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def status(self) -> str:
        return 'faulty' if self.faulty else 'live'

    def get_state(self) -> Optional[Dict[str, Any]]:
        """Full ConsensusState, atau None jika faulty"""
        if self.faulty:
            return None
        return self.state.to_dict()

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def handle_status(self, request: web.Request) -> web.Response:
        """Live/faulty status (tidak terpengaruh killed)"""
        if self.faulty:
            return web.Response(text='faulty', status=500)
        return web.Response(text='live')

    async def handle_message(self, request: web.Request) -> web.Response:
        """
        Terima vote dari node lain.
        Vote yang malformed di-drop tanpa error ke pengirim.
        """
        if self.faulty or self.state.killed:
            return web.Response(text='faulty', status=500)

        try:
            data = await request.json()
            message = VoteMessage.from_dict(data)
        except ValueError as e:
            # MalformedVote dan JSON decode error
            logger.debug(f"Node {self.node_id}: dropped malformed vote: {e}")
            metrics.record_rejected_vote(self.node_id, 'malformed')
            return web.json_response({'success': True})

        if not self.receive_vote(message):
            return web.Response(text='faulty', status=500)

        return web.json_response({'success': True})

    async def handle_start(self, request: web.Request) -> web.Response:
        if not await self.start_consensus():
            return web.Response(text='faulty', status=500)
        return web.json_response({'success': True})

    async def handle_stop(self, request: web.Request) -> web.Response:
        if not await self.stop_consensus():
            return web.Response(text='faulty', status=500)
        return web.json_response({'success': True})

    async def handle_get_state(self, request: web.Request) -> web.Response:
        state = self.get_state()
        if state is None:
            return web.json_response(ConsensusState.unknown(), status=500)
        return web.json_response(state)

    async def handle_stats(self, request: web.Request) -> web.Response:
        """Engine dan transport statistics untuk debugging"""
        stats = {
            'node_id': self.node_id,
            'status': self.status(),
            'engine': self.engine.get_state(),
            'message_passing': self.mp.get_stats()
        }
        return web.json_response(stats)

    async def handle_metrics(self, request: web.Request) -> web.Response:
        """Export Prometheus metrics"""
        metrics_data = metrics.get_metrics()
        return web.Response(body=metrics_data, content_type='text/plain')

    def __repr__(self):
        return (f"BenOrNode({self.node_id}, {self.status()}, "
                f"engine={self.engine.phase.value})")
