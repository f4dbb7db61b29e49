"""Error taxonomy for the alert receiver."""

from typing import List, Optional


class ReceiverError(Exception):
    """Base class for every error raised by the receiver."""


class ConfigError(ReceiverError):
    """Configuration file is missing required keys or has invalid values."""


class RenderError(ReceiverError):
    """A title, description or custom field template could not be rendered."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"failed to render {field}: {message}")
        self.field = field


class QueryError(ReceiverError):
    """Looking up the work item for a fingerprint failed."""


class AmbiguousMatchError(QueryError):
    """More than one work item carries the same fingerprint tag."""

    def __init__(self, fingerprint: str, item_ids: List[int]) -> None:
        super().__init__(
            f"{len(item_ids)} work items match fingerprint {fingerprint}: {item_ids}"
        )
        self.fingerprint = fingerprint
        self.item_ids = item_ids


class WriteError(ReceiverError):
    """Creating or updating a work item failed."""


class NotifyError(ReceiverError):
    """A notification could not be reflected into the backend.

    Attributes:
        stage: Stage that failed (``lookup``, ``render``, ``write`` or ``cancelled``)
        cause: Underlying stage error, if any
    """

    def __init__(self, stage: str, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"{stage}: {message}")
        self.stage = stage
        self.cause = cause


class NotifyCancelledError(NotifyError):
    """Notification was cancelled before a backend call started."""

    def __init__(self, before: str) -> None:
        super().__init__("cancelled", f"cancelled before {before}")
        self.before = before
