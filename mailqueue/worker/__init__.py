"""
Worker module.
Contains the send and cancel queue consumers.
"""

from mailqueue.worker.base import QueueConsumer
from mailqueue.worker.cancel import CancelConsumer
from mailqueue.worker.send import SendConsumer

__all__ = [
    "QueueConsumer",
    "SendConsumer",
    "CancelConsumer",
]
