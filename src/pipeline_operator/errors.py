"""Error taxonomy for the pipeline sync loop.

Not-found reads are terminal and never raised out of the sync handler. Every
exception that escapes it is retried by the work queue with backoff.
"""

from __future__ import annotations


class PipelineSyncError(Exception):
    """Base class for errors raised while syncing a pipeline."""

    pass


class NotFoundError(PipelineSyncError):
    """Raised by cache reads when the object is not present."""

    def __init__(self, kind: str, key: str) -> None:
        super().__init__(f"{kind} '{key}' not found")
        self.kind = kind
        self.key = key


class InvalidKeyError(PipelineSyncError):
    """Raised when a work queue key cannot be split into namespace and name."""

    pass


class NamespaceNotEligibleError(PipelineSyncError):
    """Raised when a pipeline lives in a namespace not owned by a DevOps project."""

    def __init__(self, namespace: str) -> None:
        super().__init__(f"could not sync pipeline in normal namespace {namespace}")
        self.namespace = namespace


class DevOpsClientError(PipelineSyncError):
    """Raised by the DevOps service client for any failed request."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(f"devops request failed ({status}): {message}")
        self.status = status
        self.message = message


class DevOpsNotFoundError(DevOpsClientError):
    """Raised when the remote pipeline config does not exist."""

    def __init__(self, message: str = "not found") -> None:
        super().__init__(404, message)


class StoreConflictError(PipelineSyncError):
    """Raised when a resource write loses an optimistic concurrency race."""

    pass


class FinalizerRetainedError(PipelineSyncError):
    """Raised when remote cleanup failed and the finalizer must stay in place."""

    def __init__(self, key: str, cause: Exception) -> None:
        super().__init__(
            f"failed to remove pipeline job finalizer for {key} "
            f"due to bad communication with devops: {cause}"
        )
        self.key = key
        self.cause = cause
