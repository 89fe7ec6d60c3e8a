"""Communication package initialization"""

from .message_passing import MalformedVote, MessagePassing, VoteBroadcaster, VoteMessage
from .local_network import LocalNetwork, LocalTransport, NetworkConfig

__all__ = [
    'MalformedVote', 'MessagePassing', 'VoteBroadcaster', 'VoteMessage',
    'LocalNetwork', 'LocalTransport', 'NetworkConfig'
]
