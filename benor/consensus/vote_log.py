"""
Vote log untuk Ben-Or consensus.

Setiap node punya dua log independen (phase 1 dan phase 2).
Log bersifat append-only dan diperlakukan sebagai unordered multiset
yang bisa di-filter berdasarkan round.

Round engine menunggu quorum lewat wait_for_votes(): waiter dibangunkan
oleh setiap vote yang masuk, dibatasi oleh deadline.
"""

import asyncio
from enum import IntEnum
from typing import Dict, List, Set, Tuple
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)


class Phase(IntEnum):
    """
    2 phase dalam satu round Ben-Or:
    - ONE: initial proposal (estimate x)
    - TWO: confirmation (proposed value)
    """
    ONE = 1
    TWO = 2


@dataclass(frozen=True)
class VoteRecord:
    """Satu vote yang diterima: pengirim, round, dan bit value"""
    sender: int
    round: int
    value: int

    def __repr__(self):
        return f"VoteRecord(from={self.sender}, round={self.round}, value={self.value})"


class VoteLog:
    """
    Append-only log untuk satu phase.

    Jika deduplicate aktif, vote kedua dari sender yang sama
    untuk round yang sama ditolak. Tanpa ini, sender Byzantine bisa
    menggelembungkan tally-nya sendiri.
    """

    def __init__(self, phase: Phase, deduplicate: bool = True):
        self.phase = phase
        self.deduplicate = deduplicate

        self._records: List[VoteRecord] = []
        self._seen: Set[Tuple[int, int]] = set()

        # Di-set setiap kali ada vote baru
        self._changed = asyncio.Event()

    def add(self, record: VoteRecord) -> bool:
        """
        Append vote ke log.

        Returns:
            True jika recorded, False jika duplicate ditolak
        """
        key = (record.sender, record.round)
        if self.deduplicate and key in self._seen:
            logger.debug(f"Phase {int(self.phase)}: duplicate vote from {record.sender} "
                         f"for round {record.round} rejected")
            return False

        self._seen.add(key)
        self._records.append(record)
        self._changed.set()
        return True

    def has_voted(self, sender: int, round: int) -> bool:
        return (sender, round) in self._seen

    def votes_for_round(self, round: int) -> List[VoteRecord]:
        """Semua votes untuk round tertentu"""
        return [r for r in self._records if r.round == round]

    def count(self, round: int) -> int:
        return sum(1 for r in self._records if r.round == round)

    def tally(self, round: int) -> Dict[int, int]:
        """Hitung votes per value untuk round: {0: n0, 1: n1}"""
        counts = {0: 0, 1: 0}
        for record in self.votes_for_round(round):
            counts[record.value] += 1
        return counts

    def clear(self):
        """Reset log (dipanggil oleh start)"""
        self._records = []
        self._seen = set()
        self._changed.clear()

    async def wait_for_votes(self, round: int, threshold: int, timeout: float) -> bool:
        """
        Tunggu sampai votes untuk round mencapai threshold.

        Args:
            round: Round yang ditunggu
            threshold: Jumlah votes minimum
            timeout: Maximum time to wait (seconds)

        Returns:
            True jika threshold tercapai, False jika timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while self.count(round) < threshold:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False

            self._changed.clear()
            try:
                await asyncio.wait_for(self._changed.wait(), remaining)
            except asyncio.TimeoutError:
                return self.count(round) >= threshold

        return True

    def __len__(self):
        return len(self._records)

    def __repr__(self):
        return f"VoteLog(phase={int(self.phase)}, votes={len(self._records)})"
