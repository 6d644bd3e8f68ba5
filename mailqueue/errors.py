"""
Exception taxonomy for the dispatch pipeline.

Expected conditions (lock contention, lost conditional writes, transport
failures, infrastructure outages) are absorbed by the consumers and turned
into an acknowledge / leave-for-redelivery decision. Only programming and
configuration errors are meant to surface to callers.
"""


class MailQueueError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(MailQueueError):
    """Settings violate a timing or sizing invariant."""


class LockContended(MailQueueError):
    """Another owner holds a live lock on the job."""

    def __init__(self, job_id: str):
        super().__init__(f"Lock for job {job_id} is held by another owner")
        self.job_id = job_id


class TransitionConflict(MailQueueError):
    """A conditional status write lost the race to another actor."""

    def __init__(self, job_id: str, detail: str = ""):
        message = f"Status transition conflict for job {job_id}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.job_id = job_id


class InvalidTransition(MailQueueError):
    """A status change outside the allowed transition graph was requested."""

    def __init__(self, job_id: str, current: str, target: str):
        super().__init__(f"Job {job_id}: transition {current} -> {target} is not allowed")
        self.job_id = job_id
        self.current = current
        self.target = target


class DuplicateJob(MailQueueError):
    """A job with the same id already exists."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} already exists")
        self.job_id = job_id


class TransportFailure(MailQueueError):
    """The email transport did not accept the message."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SecretUnavailable(MailQueueError):
    """A credential could not be fetched from the secret provider."""

    def __init__(self, name: str, reason: str = ""):
        message = f"Secret {name!r} is unavailable"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.name = name


class StoreUnavailable(MailQueueError):
    """The job or lock table could not be reached."""


class QueueUnavailable(MailQueueError):
    """The message queue could not be reached."""


class AmbiguousSendOutcome(MailQueueError):
    """A job was found mid-send after its previous owner vanished."""

    def __init__(self, job_id: str):
        super().__init__(
            f"Send outcome for job {job_id} is unknown: a previous attempt "
            "ended without releasing its lock"
        )
        self.job_id = job_id
