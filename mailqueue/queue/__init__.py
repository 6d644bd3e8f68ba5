"""
Queue module.
Contains the queue contract and the database-backed implementation.
"""

from mailqueue.queue.base import MessageQueue
from mailqueue.queue.sql import SqlMessageQueue

__all__ = [
    "MessageQueue",
    "SqlMessageQueue",
]
