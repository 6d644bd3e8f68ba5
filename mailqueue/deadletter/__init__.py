"""
Dead-letter module.
Contains the absorber, the depth monitor and the operator CLI.
"""

from mailqueue.deadletter.absorber import DeadLetterAbsorber
from mailqueue.deadletter.main import DeadLetterMonitor

__all__ = [
    "DeadLetterAbsorber",
    "DeadLetterMonitor",
]
