"""
Message passing layer untuk inter-node communication.
Menggunakan aiohttp untuk async HTTP communication.

Delivery bersifat best-effort dan at-most-once: kegagalan kirim
ke satu target di-log dan di-swallow, tidak pernah masuk ke protocol state.
"""

import asyncio
import aiohttp
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
import logging

from ..utils.metrics import metrics

logger = logging.getLogger(__name__)


class MalformedVote(ValueError):
    """Vote payload yang tidak valid. Di-drop tanpa error ke pengirim."""


def _is_int(value: Any) -> bool:
    # bool adalah subclass int, tapi bukan vote yang valid
    return isinstance(value, int) and not isinstance(value, bool)


class VoteMessage:
    """
    Class untuk represent vote yang dikirim antar nodes.
    Wire format: {"from": int, "phase": 1|2, "round": int, "value": 0|1}
    """

    def __init__(self, sender_id: int, phase: int, round: int, value: int):
        """
        Args:
            sender_id: ID node pengirim
            phase: 1 (proposal) atau 2 (confirmation)
            round: Round number k
            value: Bit value 0 atau 1
        """
        self.sender_id = sender_id
        self.phase = phase
        self.round = round
        self.value = value

    def to_dict(self) -> Dict[str, Any]:
        """Convert message ke dictionary untuk JSON serialization"""
        return {
            'from': self.sender_id,
            'phase': self.phase,
            'round': self.round,
            'value': self.value
        }

    @classmethod
    def from_dict(cls, data: Any) -> 'VoteMessage':
        """
        Create message dari dictionary dengan validasi.

        Raises:
            MalformedVote: jika field hilang atau value di luar range
        """
        if not isinstance(data, dict):
            raise MalformedVote(f"Expected object, got {type(data).__name__}")

        sender_id = data.get('from')
        phase = data.get('phase')
        round = data.get('round')
        value = data.get('value')

        if not _is_int(value) or value not in (0, 1):
            raise MalformedVote(f"Invalid value: {value!r}")
        if not _is_int(phase) or phase not in (1, 2):
            raise MalformedVote(f"Invalid phase: {phase!r}")
        if not _is_int(round) or round < 0:
            raise MalformedVote(f"Invalid round: {round!r}")
        if not _is_int(sender_id):
            raise MalformedVote(f"Invalid sender: {sender_id!r}")

        return cls(sender_id=sender_id, phase=phase, round=round, value=value)

    def __eq__(self, other):
        return isinstance(other, VoteMessage) and self.to_dict() == other.to_dict()

    def __repr__(self):
        return (f"VoteMessage(from={self.sender_id}, phase={self.phase}, "
                f"round={self.round}, value={self.value})")


class VoteBroadcaster(ABC):
    """Interface transport yang dipakai round engine"""

    @abstractmethod
    async def broadcast_vote(self, phase: int, round: int, value: int) -> int:
        """
        Kirim vote ke semua node lain (self tidak termasuk).

        Returns:
            Jumlah target yang berhasil menerima
        """
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, int]:
        """Counter messages_sent dan failed_sends"""
        pass


class MessagePassing(VoteBroadcaster):
    """
    Class untuk handle sending votes ke peers lewat HTTP.
    Menggunakan aiohttp untuk async HTTP communication.
    """

    def __init__(self, node_id: int, peers: List[str], send_timeout: float = 5.0):
        """
        Args:
            node_id: ID node ini
            peers: List of peer addresses ("host:port"), self tidak termasuk
            send_timeout: Timeout per request (seconds)
        """
        self.node_id = node_id
        self.peers = peers
        self.send_timeout = send_timeout
        self.session: Optional[aiohttp.ClientSession] = None

        # Statistics
        self.messages_sent = 0
        self.failed_sends = 0

    async def initialize(self):
        """Initialize HTTP client session"""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.send_timeout)
        )
        logger.info(f"MessagePassing initialized for node {self.node_id}")

    async def close(self):
        """Close HTTP client session"""
        if self.session:
            await self.session.close()
            self.session = None
        logger.info(f"MessagePassing closed for node {self.node_id}")

    async def send_message(self, target_address: str, message: VoteMessage) -> bool:
        """
        Send vote ke target node.

        Args:
            target_address: Format "host:port"
            message: VoteMessage to send

        Returns:
            True jika target menerima (HTTP 200), False jika gagal
        """
        if not self.session:
            await self.initialize()

        url = f"http://{target_address}/message"

        try:
            async with self.session.post(url, json=message.to_dict()) as response:
                if response.status == 200:
                    self.messages_sent += 1
                    logger.debug(f"Sent {message} to {target_address}")
                    return True

                # Target killed atau faulty
                logger.debug(f"Vote rejected by {target_address}: {response.status}")
                self.failed_sends += 1
                return False

        except asyncio.TimeoutError:
            logger.warning(f"Timeout sending vote to {target_address}")
            self.failed_sends += 1
            return False

        except aiohttp.ClientError as e:
            logger.debug(f"Error sending vote to {target_address}: {e}")
            self.failed_sends += 1
            return False

    async def broadcast_message(self, message: VoteMessage) -> List[bool]:
        """
        Broadcast vote ke semua peers secara parallel.

        Returns:
            List of delivery results (False untuk failed sends)
        """
        # Gunakan asyncio.gather untuk parallel sending
        tasks = [
            self.send_message(address, message)
            for address in self.peers
        ]

        results = await asyncio.gather(*tasks, return_exceptions=True)

        # Convert exceptions to False
        return [r is True for r in results]

    async def broadcast_vote(self, phase: int, round: int, value: int) -> int:
        message = VoteMessage(sender_id=self.node_id, phase=phase, round=round, value=value)
        results = await self.broadcast_message(message)

        delivered = sum(1 for r in results if r)
        metrics.record_broadcast(self.node_id, phase, failed=len(results) - delivered)

        logger.debug(f"Broadcast {message} to {len(self.peers)} peers, {delivered} successful")
        return delivered

    def get_stats(self) -> Dict[str, int]:
        """Get message passing statistics"""
        return {
            'messages_sent': self.messages_sent,
            'failed_sends': self.failed_sends
        }
