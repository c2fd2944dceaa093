"""
Outbox - durable mutation queue and replay.
"""

from .database import QueueDatabase
from .models import Base, QueuedMutationRecord
from .mutation_queue import DurableMutationQueue
from .replay import ReplayCoordinator, ReplayStats

__all__ = [
    'QueueDatabase',
    'Base',
    'QueuedMutationRecord',
    'DurableMutationQueue',
    'ReplayCoordinator',
    'ReplayStats',
]
