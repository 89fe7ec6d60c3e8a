"""
Implementasi Ben-Or Binary Consensus.

Ben-Or adalah randomized consensus algorithm untuk binary value
dengan toleransi sampai F faulty nodes. Setiap round terdiri dari 2 phase:
1. Proposal: broadcast estimate x, kumpulkan N - F votes
2. Confirmation: broadcast proposed value, kumpulkan N - F votes
Lalu finalize: decide jika N - F votes setuju, atau lanjut ke round berikutnya.

Implementasi ini memakai deterministic fallback (bukan coin flip) saat
tidak ada majority di phase 1.

Reference: Ben-Or, "Another Advantage of Free Choice" (PODC 1983)
"""

import asyncio
from enum import Enum
from typing import Dict, Optional, Any, Union
from dataclasses import dataclass, asdict
import logging

from .vote_log import Phase, VoteLog, VoteRecord
from ..communication.message_passing import VoteBroadcaster
from ..utils.metrics import metrics

logger = logging.getLogger(__name__)

UNKNOWN_VALUE = "?"


class EngineState(Enum):
    """
    State machine per node:
    IDLE -> PROPOSE1 -> COLLECT1 -> PROPOSE2 -> COLLECT2 -> FINALIZE
    lalu loop ke PROPOSE1 (round k+1), atau terminal DECIDED / ABORTED.
    FROZEN jika node killed atau faulty.
    """
    IDLE = "idle"
    PROPOSE1 = "propose1"
    COLLECT1 = "collect1"
    PROPOSE2 = "propose2"
    COLLECT2 = "collect2"
    FINALIZE = "finalize"
    DECIDED = "decided"
    ABORTED = "aborted"
    FROZEN = "frozen"


@dataclass(frozen=True)
class NodeIdentity:
    """Identitas node, immutable sejak node dibuat"""
    node_id: int
    n: int
    f: int
    faulty: bool = False

    @property
    def quorum(self) -> int:
        """Majority quorum untuk phase 1: floor((N+1)/2)"""
        return majority_quorum(self.n)

    @property
    def decision_threshold(self) -> int:
        """Votes yang dibutuhkan untuk collect dan decide: N - F"""
        return self.n - self.f


@dataclass
class ConsensusState:
    """
    Mutable state yang dimiliki round engine satu node.

    decided: None = faulty/frozen, False = in progress, True = decided
    """
    killed: bool = False
    x: Optional[int] = None
    decided: Optional[bool] = None
    k: Optional[int] = None

    @classmethod
    def initial(cls, identity: NodeIdentity, initial_value: Optional[int]) -> 'ConsensusState':
        """State saat node startup. Faulty node: semua field None."""
        if identity.faulty:
            return cls()
        return cls(x=initial_value, decided=False, k=0)

    def reset(self, initial_value: Optional[int]):
        """Reset ke round 0 (dipanggil oleh start)"""
        self.k = 0
        self.decided = False
        self.x = initial_value

    def freeze(self):
        """Freeze node (dipanggil oleh stop). x dan k tidak diubah."""
        self.killed = True
        self.decided = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @staticmethod
    def unknown() -> Dict[str, Any]:
        """State yang dilaporkan oleh faulty node"""
        return {'killed': None, 'x': None, 'decided': None, 'k': None}


def majority_quorum(n: int) -> int:
    return (n + 1) // 2


def proposal_value(counts: Dict[int, int], n: int, fallback: int = 1) -> int:
    """
    Pilih value untuk phase 2 dari tally phase 1.

    Value 1 dicek lebih dulu, lalu 0. Jika tidak ada yang mencapai
    quorum, hasilnya fallback. Canonical Ben-Or memakai random coin di sini;
    fallback deterministic membuat outcome bias ke fallback dan melemahkan
    liveness terhadap adversarial scheduler.
    """
    quorum = majority_quorum(n)
    if counts.get(1, 0) >= quorum:
        return 1
    if counts.get(0, 0) >= quorum:
        return 0
    return fallback


def decision_value(counts: Dict[int, int], n: int, f: int) -> Optional[int]:
    """Decide jika satu value punya >= N - F votes di phase 2, else None"""
    threshold = n - f
    if counts.get(1, 0) >= threshold:
        return 1
    if counts.get(0, 0) >= threshold:
        return 0
    return None


def sanitize_initial_value(value: Union[int, str, None], faulty: bool = False) -> Optional[int]:
    """
    Normalize initial value.
    Faulty node atau value "?" (unknown) -> None.

    Raises:
        ValueError: jika value bukan 0, 1, "?" atau None
    """
    if faulty or value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid initial value: {value!r}")
    if value == UNKNOWN_VALUE:
        return None
    if value in (0, 1, "0", "1"):
        return int(value)
    raise ValueError(f"Invalid initial value: {value!r}")


class BenOrEngine:
    """
    Round engine untuk satu node.

    Engine tidak pernah raise: undecided setelah round cap
    direpresentasikan sebagai state (ABORTED), bukan exception.
    Flag killed dicek di setiap suspension point.
    """

    def __init__(self,
                 identity: NodeIdentity,
                 state: ConsensusState,
                 phase1_log: VoteLog,
                 phase2_log: VoteLog,
                 broadcaster: VoteBroadcaster,
                 round_cap: int = 15,
                 quorum_timeout: int = 100,
                 fallback_value: int = 1,
                 count_own_vote: bool = True):
        """
        Args:
            identity: NodeIdentity node ini
            state: ConsensusState yang di-drive engine
            phase1_log: VoteLog untuk phase 1
            phase2_log: VoteLog untuk phase 2
            broadcaster: Transport untuk kirim votes ke peers
            round_cap: Maximum rounds sebelum menyerah
            quorum_timeout: Interval tunggu quorum sebelum retry (ms)
            fallback_value: Value phase 2 jika tidak ada majority
            count_own_vote: Catat vote sendiri di log sendiri
        """
        self.identity = identity
        self.state = state
        self.phase1_log = phase1_log
        self.phase2_log = phase2_log
        self.broadcaster = broadcaster

        self.round_cap = round_cap
        self.quorum_timeout = quorum_timeout / 1000
        self.fallback_value = fallback_value
        self.count_own_vote = count_own_vote

        self.phase = EngineState.IDLE

        # Statistics
        self.retries = 0
        self.broadcasts_sent = 0

    @property
    def node_id(self) -> int:
        return self.identity.node_id

    def _should_freeze(self) -> bool:
        """Check killed/faulty, transition ke FROZEN jika ya"""
        if self.state.killed or self.identity.faulty:
            if self.phase != EngineState.FROZEN:
                logger.debug(f"Node {self.node_id}: {self.phase.value} -> FROZEN")
            self.phase = EngineState.FROZEN
            return True
        return False

    async def run(self):
        """Jalankan engine sampai DECIDED, ABORTED, atau FROZEN"""
        try:
            await self._run()
        except asyncio.CancelledError:
            self.phase = EngineState.FROZEN
            raise

    async def _run(self):
        if self._should_freeze():
            return

        # Single node langsung decide
        if self.identity.n == 1:
            self.state.decided = True
            if self.state.x is None:
                self.state.x = 1
            self.phase = EngineState.DECIDED
            metrics.record_decision(self.node_id, self.state.x)
            logger.info(f"Node {self.node_id}: single node, decided {self.state.x}")
            return

        while True:
            k = self.state.k
            metrics.set_round(self.node_id, k)

            counts1 = await self._exchange(self.phase1_log, Phase.ONE, k, self.state.x)
            if counts1 is None:
                return

            proposed = proposal_value(counts1, self.identity.n, self.fallback_value)
            logger.debug(f"Node {self.node_id}: round {k} phase 1 tally {counts1}, "
                         f"proposing {proposed}")

            counts2 = await self._exchange(self.phase2_log, Phase.TWO, k, proposed)
            if counts2 is None:
                return

            if not self._finalize(k, proposed, counts2):
                break

        if self.phase == EngineState.DECIDED:
            await self._announce_decision(k + 1, self.state.x)

    async def _exchange(self,
                        log: VoteLog,
                        phase: Phase,
                        k: int,
                        value: Optional[int]) -> Optional[Dict[int, int]]:
        """
        PROPOSE lalu COLLECT untuk satu phase.
        Retry tanpa menaikkan round sampai N - F votes terkumpul.

        Returns:
            Tally untuk round k, atau None jika frozen
        """
        if phase == Phase.ONE:
            propose_state, collect_state = EngineState.PROPOSE1, EngineState.COLLECT1
        else:
            propose_state, collect_state = EngineState.PROPOSE2, EngineState.COLLECT2

        threshold = self.identity.decision_threshold

        while True:
            if self._should_freeze():
                return None

            self.phase = propose_state
            if value is not None:
                await self._propose(log, phase, k, value)
                if self._should_freeze():
                    return None

            self.phase = collect_state
            reached = await log.wait_for_votes(k, threshold, self.quorum_timeout)
            if self._should_freeze():
                return None

            if reached:
                return log.tally(k)

            self.retries += 1
            logger.info(f"Node {self.node_id}: Not enough phase {int(phase)} votes "
                        f"for round {k} ({log.count(k)}/{threshold}), waiting...")

    async def _propose(self, log: VoteLog, phase: Phase, k: int, value: int):
        if self.count_own_vote and not log.has_voted(self.node_id, k):
            log.add(VoteRecord(sender=self.node_id, round=k, value=value))

        await self.broadcaster.broadcast_vote(phase, k, value)
        self.broadcasts_sent += 1

    def _finalize(self, k: int, proposed: int, counts: Dict[int, int]) -> bool:
        """
        FINALIZE step.

        Returns:
            True jika lanjut ke round berikutnya
        """
        self.phase = EngineState.FINALIZE

        decided = decision_value(counts, self.identity.n, self.identity.f)
        if decided is not None:
            self.state.x = decided
            self.state.decided = True
            self.phase = EngineState.DECIDED
            metrics.record_decision(self.node_id, decided)
            logger.info(f"Node {self.node_id}: decided {decided} in round {k} "
                        f"(phase 2 tally {counts})")
            return False

        self.state.x = proposed
        self.state.decided = False
        self.state.k = k + 1
        metrics.set_round(self.node_id, self.state.k)

        if self.state.k >= self.round_cap:
            self.phase = EngineState.ABORTED
            metrics.record_abort(self.node_id)
            logger.warning(f"Node {self.node_id} exceeded max rounds ({self.round_cap}), stopping.")
            return False

        logger.debug(f"Node {self.node_id}: no decision in round {k}, "
                     f"moving to round {self.state.k} with x={proposed}")
        return True

    async def _announce_decision(self, next_round: int, value: int):
        """
        Ikut satu round lagi dengan decided value.
        Peers yang belum decide tetap bisa mengumpulkan N - F votes
        setelah node ini berhenti. State tidak berubah.
        """
        for phase in (Phase.ONE, Phase.TWO):
            if self._should_freeze():
                return
            await self.broadcaster.broadcast_vote(phase, next_round, value)
            self.broadcasts_sent += 1

    def get_state(self) -> Dict[str, Any]:
        """Get engine state untuk debugging/monitoring"""
        return {
            'node_id': self.node_id,
            'phase': self.phase.value,
            'round': self.state.k,
            'retries': self.retries,
            'broadcasts_sent': self.broadcasts_sent,
            'phase1_votes': len(self.phase1_log),
            'phase2_votes': len(self.phase2_log)
        }
