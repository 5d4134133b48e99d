# bytsave/models/errors.py

"""Exception hierarchy shared by the pipeline and its collaborators."""


class AlertPipelineError(Exception):
    """Base class for all BytSave pipeline errors."""


class SnapshotNotFoundError(AlertPipelineError):
    """The catalog returned no usable price for a product."""

    def __init__(self, identifier: str, reason: str = "") -> None:
        self.identifier = identifier
        self.reason = reason
        detail = f": {reason}" if reason else ""
        super().__init__(f"No snapshot for {identifier}{detail}")


class ConcurrencyError(AlertPipelineError):
    """A conditional update lost against a newer version of the record."""

    def __init__(
        self,
        item_id: int,
        expected_version: int,
        actual_version: int | None,
    ) -> None:
        self.item_id = item_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Tracker {item_id} changed since read "
            f"(expected v{expected_version}, found v{actual_version})"
        )


class NotificationError(AlertPipelineError):
    """A notifier could not deliver a message."""


class RunInProgressError(AlertPipelineError):
    """Another alert run is still active in this process."""
