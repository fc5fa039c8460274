import logging

from stackdeploy.deploy.exceptions import DeployError, DeploymentFailedError
from stackdeploy.deploy.models import (
    ChangeSet,
    DeployResult,
    ParameterDiff,
    StackEvent,
    StackIdentity,
)

LOG = logging.getLogger(__name__)


class ProgressSink:
    """Receives the progress of a deployment. All hooks are no-ops, subclasses override the ones they need."""

    def on_change_set(self, change_set: ChangeSet, diff: ParameterDiff) -> None:
        """Called with the computed change set and the advisory parameter diff, before execution."""

    def on_event(self, event: StackEvent) -> None:
        """Called for every new stack event, in temporal order."""

    def on_complete(self, result: DeployResult) -> None:
        """Called once with the terminal result of a successful deployment."""

    def on_failure(self, stack: StackIdentity, error: DeployError) -> None:
        """Called once with the error that ended a failed, cancelled, or timed out operation."""


class LoggingProgressSink(ProgressSink):
    """
    Logs the progress of a deployment. Every record carries the stack name in its ``stack`` attribute, which the
    default log format renders in front of the message.
    """

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or LOG

    def on_change_set(self, change_set: ChangeSet, diff: ParameterDiff) -> None:
        extra = {"stack": change_set.stack.name}
        self.logger.info(
            "Change set contains %s resource change(s)", len(change_set.changes), extra=extra
        )
        for change in change_set.changes:
            self.logger.info(
                "  %s %s (%s)",
                change.action,
                change.logical_resource_id,
                change.resource_type,
                extra=extra,
            )
        for line in diff.summary():
            self.logger.info("  parameter %s", line, extra=extra)

    def on_event(self, event: StackEvent) -> None:
        extra = {"stack": event.stack_name} if event.stack_name else None
        if event.status_reason:
            self.logger.info(
                "%s %s: %s",
                event.logical_resource_id,
                event.status,
                event.status_reason,
                extra=extra,
            )
        else:
            self.logger.info("%s %s", event.logical_resource_id, event.status, extra=extra)

    def on_complete(self, result: DeployResult) -> None:
        self.logger.info(
            "%s (%s)", result.outcome.value, result.status, extra={"stack": result.stack.name}
        )

    def on_failure(self, stack: StackIdentity, error: DeployError) -> None:
        status = error.status if isinstance(error, DeploymentFailedError) else None
        self.logger.error(
            "FAILED%s: %s",
            f" ({status})" if status else "",
            error,
            extra={"stack": stack.name},
        )
