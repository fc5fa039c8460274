import logging
import threading
from typing import Optional, Sequence

from stackdeploy import config
from stackdeploy.constants import CHANGE_SET_NAME_PREFIX
from stackdeploy.deploy.exceptions import (
    ChangeSetError,
    DeployError,
    ProviderError,
    StackOperationInProgressError,
)
from stackdeploy.deploy.models import (
    ChangeSet,
    ChangeSetStatus,
    PackagedTemplate,
    ParameterSet,
    StackIdentity,
)
from stackdeploy.deploy.provider import StackProvider
from stackdeploy.deploy.waiters import wait_for
from stackdeploy.utils.strings import long_uid
from stackdeploy.utils.time import Clock

LOG = logging.getLogger(__name__)


def change_set_name() -> str:
    return f"{CHANGE_SET_NAME_PREFIX}-{long_uid()}"


class ChangeSetPreviewer:
    """
    Computes the change set between the desired template and parameters and the live stack, and waits until the
    provider has finished computing it.
    """

    def __init__(
        self,
        provider: StackProvider,
        clock: Optional[Clock] = None,
        poll_interval: Optional[float] = None,
        max_wait: Optional[float] = None,
    ):
        self.provider = provider
        self.clock = clock or Clock()
        self.poll_interval = (
            config.CHANGE_SET_POLL_INTERVAL if poll_interval is None else poll_interval
        )
        self.max_wait = config.CHANGE_SET_MAX_WAIT if max_wait is None else max_wait

    def preview(
        self,
        stack: StackIdentity,
        packaged: PackagedTemplate,
        parameters: ParameterSet,
        change_set_type: str,
        tags: Optional[dict[str, str]] = None,
        capabilities: Sequence[str] = (),
        cancel_event: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> ChangeSet:
        """
        Creates a change set and polls it until it leaves ``PENDING``.

        :return: the change set, with status ``READY`` or ``EMPTY``
        :raises ChangeSetError: if the provider failed to compute the change set
        :raises StackOperationInProgressError: if another operation on the stack is in progress
        :raises StackTimeoutError: if the change set is still pending after ``max_wait`` seconds
        :raises DeploymentCancelledError: if the caller cancelled or the caller's deadline passed
        """
        name = change_set_name()
        LOG.debug("Creating %s change set %s for stack %s", change_set_type, name, stack)
        try:
            change_set_id = self.provider.create_change_set(
                stack,
                name,
                change_set_type,
                packaged,
                parameters,
                tags=tags,
                capabilities=capabilities,
                description=f"{change_set_type.lower()} of stack {stack.name}",
            )
        except StackOperationInProgressError as e:
            if e.code != "AlreadyExistsException":
                raise
            # a retried request fails like this if the first attempt created the change set
            change_set_id = self._existing_change_set_id(name, stack)
            if change_set_id is None:
                raise
            LOG.debug("Change set %s of stack %s already exists, polling it", name, stack.name)
        except ProviderError as e:
            raise ChangeSetError(
                f"unable to create change set: {e.message}", reason=e.message
            ).with_context(f"create change set {name}") from e

        current: list[ChangeSet] = []

        def _computed() -> bool:
            try:
                change_set = self.provider.describe_change_set(change_set_id, stack)
            except ProviderError as e:
                raise ChangeSetError(
                    f"unable to describe change set: {e.message}",
                    reason=e.message,
                    change_set_id=change_set_id,
                ) from e
            current[:] = [change_set]
            return change_set.status != ChangeSetStatus.PENDING

        try:
            wait_for(
                _computed,
                clock=self.clock,
                interval=self.poll_interval,
                max_wait=self.max_wait,
                deadline=deadline,
                cancel_event=cancel_event,
                description=f"change set {name}",
            )
        except DeployError as e:
            self.discard_by_id(change_set_id, stack)
            raise e.with_context(f"create change set {name}")

        change_set = current[0]
        if change_set.status == ChangeSetStatus.FAILED:
            self.discard(change_set)
            raise ChangeSetError(
                change_set.status_reason or "change set failed without a reason",
                reason=change_set.status_reason,
                change_set_id=change_set.id,
            ).with_context(f"create change set {name}")

        if change_set.status == ChangeSetStatus.EMPTY:
            LOG.debug("Change set %s of stack %s contains no changes", name, stack.name)
        return change_set

    def _existing_change_set_id(self, name: str, stack: StackIdentity) -> Optional[str]:
        try:
            return self.provider.describe_change_set(name, stack).id
        except ProviderError:
            return None

    def discard(self, change_set: ChangeSet) -> None:
        """Deletes the change set. Errors are logged and ignored."""
        self.discard_by_id(change_set.id, change_set.stack)

    def discard_by_id(self, change_set_id: str, stack: StackIdentity) -> None:
        try:
            self.provider.delete_change_set(change_set_id, stack)
        except ProviderError as e:
            LOG.debug(
                "Unable to delete change set %s of stack %s: %s", change_set_id, stack.name, e
            )
