from typing import Optional, Sequence

from stackdeploy.deploy.models import StackEvent


class DeployError(Exception):
    """
    Base class of all errors raised by the deployment engine.

    Besides the message, an error carries a list of context frames, from the outermost operation to the
    innermost, e.g. ``["deploy stack test-api", "execute change set cs-1"]``. Frames are added while the error
    propagates with ``with_context``, and are rendered in front of the message by ``str(error)``.
    """

    def __init__(self, message: str, frames: Optional[Sequence[str]] = None):
        super().__init__(message)
        self.message = message
        self.frames: list[str] = list(frames or [])

    def with_context(self, frame: str) -> "DeployError":
        """Adds an outer context frame to this error and returns it, to be used as ``raise e.with_context(..)``."""
        self.frames.insert(0, frame)
        return self

    def __str__(self):
        return ": ".join([*self.frames, self.message])


class PackagingError(DeployError):
    """Raised when a template could not be written to the artifact storage."""


class ChangeSetError(DeployError):
    """Raised when the provider failed to create a change set for a reason other than "no changes"."""

    def __init__(
        self,
        message: str,
        reason: Optional[str] = None,
        change_set_id: Optional[str] = None,
        frames: Optional[Sequence[str]] = None,
    ):
        super().__init__(message, frames)
        self.reason = reason
        self.change_set_id = change_set_id


class StackTimeoutError(DeployError, TimeoutError):
    """Raised when a polling bound was exceeded. The provider operation may still be running."""


class DeploymentFailedError(DeployError):
    """Raised when a stack reached a failed terminal state. Carries the failed resource events."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        status_reason: Optional[str] = None,
        failed_events: Sequence[StackEvent] = (),
        frames: Optional[Sequence[str]] = None,
    ):
        super().__init__(message, frames)
        self.status = status
        self.status_reason = status_reason
        self.failed_events = tuple(failed_events)

    def __str__(self):
        message = super().__str__()
        if not self.failed_events:
            return message
        details = "\n".join(
            f"  {e.logical_resource_id} {e.status}: {e.status_reason or ''}".rstrip()
            for e in self.failed_events
        )
        return f"{message}\n{details}"


class DeploymentCancelledError(DeployError):
    """Raised when the caller cancelled the deployment. The in-flight provider operation is left running."""


class StackBusyError(DeployError):
    """Raised when another deployment of the same stack is already running and waiting is not allowed."""


class ProviderError(DeployError):
    """Raised when a provider call failed with a non-transient error, or when transient retries were exhausted."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        operation: Optional[str] = None,
        frames: Optional[Sequence[str]] = None,
    ):
        super().__init__(message, frames)
        self.code = code
        self.operation = operation


class StackOperationInProgressError(ProviderError):
    """
    Raised when the provider rejects a mutating call because the stack already exists, or an operation on the
    stack or change set is already in progress.
    """
