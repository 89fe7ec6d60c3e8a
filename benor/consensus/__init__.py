"""Consensus package initialization"""

from .ben_or import (
    BenOrEngine, ConsensusState, EngineState, NodeIdentity,
    decision_value, majority_quorum, proposal_value, sanitize_initial_value
)
from .vote_log import Phase, VoteLog, VoteRecord

__all__ = [
    'BenOrEngine', 'ConsensusState', 'EngineState', 'NodeIdentity',
    'decision_value', 'majority_quorum', 'proposal_value', 'sanitize_initial_value',
    'Phase', 'VoteLog', 'VoteRecord'
]
