"""
Voting module.

Vote submission and the offline retry queue.
"""

from .queue import OfflineVoteQueue, VoteRecord
from .submitter import VoteSubmitter

__all__ = [
    "OfflineVoteQueue",
    "VoteRecord",
    "VoteSubmitter",
]
