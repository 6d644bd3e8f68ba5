"""
Email Dispatch Pipeline

Queue-driven email sending with lock-coordinated cancellation, bounded retries,
crash recovery and dead-letter quarantine for poison messages.
"""

__version__ = "1.0.0"
