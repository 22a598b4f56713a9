"""
WardTrack Error Taxonomy
Lifecycle, validation and remote-store errors raised by the timeline engine
"""

from typing import Optional


class WardTrackError(Exception):
    """Base error for the timeline engine and sync layer"""


class InvalidTransition(WardTrackError):
    """Lifecycle change attempted from a terminal state or backwards"""

    def __init__(self, entity: str, current: str, attempted: str):
        self.entity = entity
        self.current = current
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} {entity} in state '{current}'")


class ValidationError(WardTrackError, ValueError):
    """Missing or invalid fields; nothing is persisted"""

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message)


class RecordNotFound(WardTrackError, LookupError):
    """Record id unknown to both remote and local stores, or already deleted"""


class PlanNotFound(RecordNotFound):
    """Treatment plan id unknown to both remote and local stores"""


class PatientNotFound(RecordNotFound):
    """Patient id unknown to both remote and local stores"""


class ItemNotFound(WardTrackError, LookupError):
    """Timeline item id not present in the plan"""


class RemoteUnavailable(WardTrackError):
    """Transient network or storage failure talking to the remote store"""


class RemoteRequestError(WardTrackError):
    """Remote store rejected the request"""

    def __init__(self, *, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"Remote store request failed ({status_code}): {message}")


class ReconciliationConflict(WardTrackError):
    """A dirty local record was overwritten by remote state during fetch"""

    def __init__(self, collection: str, record_id: str, local_version: int):
        self.collection = collection
        self.record_id = record_id
        self.local_version = local_version
        super().__init__(
            f"Unsynced local edit of {collection}/{record_id} (v{local_version}) "
            f"replaced by remote state"
        )
