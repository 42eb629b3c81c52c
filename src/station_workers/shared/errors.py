"""
Exception taxonomy for Station Snapshot workers

Conflicts, not-found and external fetch failures are expected outcomes and
each gets its own type, so callers never have to tell "retry with fresh
state" apart from "give up" by parsing messages.
"""


class StationWorkersError(Exception):
    """Base class for all worker errors"""


class ConfigurationError(StationWorkersError):
    """A required setting is missing or invalid. Fatal at handler startup."""


class StoreError(StationWorkersError):
    """Non-recoverable failure talking to a bucket"""


class StoreUnavailable(StoreError):
    """Transient bucket failure (network, throttling, 5xx)"""


class PreconditionFailed(StoreError):
    """Conditional write rejected: the version token is stale"""

    def __init__(self, key, etag=None):
        super().__init__(f"Precondition failed for {key} (etag {etag})")
        self.key = key
        self.etag = etag


class ProcessNotFound(StationWorkersError):
    def __init__(self, process_id):
        super().__init__(f"Process {process_id} not found")
        self.process_id = process_id


class MergeConflictError(StationWorkersError):
    """The CAS merge attempt budget ran out"""

    def __init__(self, process_id, attempts):
        super().__init__(
            f"Gave up merging into process {process_id} after {attempts} attempts"
        )
        self.process_id = process_id
        self.attempts = attempts


class FetchError(StationWorkersError):
    """An external provider (weather feed, photo feed) failed"""


class QueueUnavailable(StationWorkersError):
    """A message could not be sent to a queue"""


class MalformedMessage(StationWorkersError, ValueError):
    """A queue message failed schema validation"""
