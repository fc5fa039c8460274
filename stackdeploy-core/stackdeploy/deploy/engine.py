"""
The stack deployment engine.

``StackDeployer.deploy`` drives a stack to a terminal state::

    ABSENT                 -> create change set -> execute -> CREATE_COMPLETE
    CREATE/UPDATE_COMPLETE -> update change set -> execute -> UPDATE_COMPLETE (no-op if empty)
    ROLLBACK_COMPLETE      -> delete -> ABSENT -> create ...
    *_IN_PROGRESS          -> attach, wait for a terminal state, then evaluate that state

Every pass starts from the observed state of the stack. Within one process, deployments of the same
stack are serialized (or rejected, depending on the concurrent deploy mode).
"""

import dataclasses
import logging
import threading
from typing import Optional, Sequence

from stackdeploy import config
from stackdeploy.constants import CONCURRENT_DEPLOY_REJECT, DEFAULT_CAPABILITIES
from stackdeploy.deploy.changeset import ChangeSetPreviewer
from stackdeploy.deploy.events import StackEventReader
from stackdeploy.deploy.exceptions import (
    DeployError,
    DeploymentFailedError,
    ProviderError,
    StackBusyError,
    StackOperationInProgressError,
    StackTimeoutError,
)
from stackdeploy.deploy.models import (
    ChangeSetStatus,
    ChangeSetType,
    DeployOutcome,
    DeployResult,
    NestedStackReference,
    PackagedTemplate,
    ParameterSet,
    StackDescription,
    StackEvent,
    StackIdentity,
    StackState,
    StackStatus,
    Template,
)
from stackdeploy.deploy.nested import NestedStackResolver
from stackdeploy.deploy.packager import TemplatePackager, diff_parameters
from stackdeploy.deploy.progress import ProgressSink
from stackdeploy.deploy.provider import StackProvider
from stackdeploy.deploy.stack import StackConfiguration
from stackdeploy.deploy.waiters import check_cancelled
from stackdeploy.utils.sync import SynchronizedDefaultDict
from stackdeploy.utils.time import Clock

LOG = logging.getLogger(__name__)

# upper bound of observe/act passes of a single deploy call
MAX_RECONCILE_PASSES = 8

# seconds between attempts to acquire the lock of a stack held by another deployment
LOCK_RETRY_INTERVAL = 0.1


@dataclasses.dataclass
class _Operation:
    """State of a single deploy or delete call."""

    stack: StackIdentity
    progress: ProgressSink
    cancel_event: Optional[threading.Event] = None
    deadline: Optional[float] = None
    tags: dict[str, str] = dataclasses.field(default_factory=dict)
    events: list[StackEvent] = dataclasses.field(default_factory=list)


class _TerminalStateWatch:
    """
    Condition for ``StackEventReader.stream`` that becomes true once the stack left the in-progress
    states. The stack status is polled at most every ``interval`` seconds, independently of the event
    polling cadence.
    """

    def __init__(
        self,
        deployer: "StackDeployer",
        operation: _Operation,
        description: str,
        last_state: Optional[StackState] = None,
        target_absent: bool = False,
    ):
        self.provider = deployer.provider
        self.clock = deployer.clock
        self.interval = deployer.stack_poll_interval
        self.max_wait = deployer.stack_max_wait
        self.operation = operation
        self.what = description
        self.last_state = last_state
        self.target_absent = target_absent
        self.started = self.clock.now()
        self.next_check = self.started
        self.description: Optional[StackDescription] = None

    def __call__(self) -> bool:
        op = self.operation
        check_cancelled(self.clock, op.deadline, op.cancel_event, self.what)
        now = self.clock.now()
        if now < self.next_check:
            return False
        if now - self.started >= self.max_wait:
            raise StackTimeoutError(f"timed out after {self.max_wait:g}s waiting for {self.what}")
        self.next_check = now + self.interval

        self.description = self.provider.describe_stack(op.stack)
        state = self.description.state if self.description else StackState.ABSENT
        if state.in_progress:
            if state != self.last_state:
                LOG.debug("Stack %s is in state %s", op.stack.name, state.value)
            self.last_state = state
            return False

        if state == StackState.ABSENT and not self.target_absent:
            if self.last_state is None:
                # the operation is not visible yet
                return False
            if self.last_state != StackState.DELETE_IN_PROGRESS:
                raise DeploymentFailedError(
                    f"stack disappeared while in state {self.last_state.value}",
                    status=StackStatus.DELETE_COMPLETE,
                )
        return True


class StackDeployer:
    """
    Deploys stacks through the change set lifecycle of the provider.

    All collaborators are passed explicitly: the ``provider`` gives access to the cloud account, the
    ``clock`` drives every polling loop. The interval and bound arguments default to the values in
    ``stackdeploy.config``.
    """

    def __init__(
        self,
        provider: StackProvider,
        packager: Optional[TemplatePackager] = None,
        *,
        clock: Optional[Clock] = None,
        change_set_poll_interval: Optional[float] = None,
        change_set_max_wait: Optional[float] = None,
        stack_poll_interval: Optional[float] = None,
        stack_max_wait: Optional[float] = None,
        event_poll_interval: Optional[float] = None,
        concurrent_mode: Optional[str] = None,
        tags: Optional[dict[str, str]] = None,
        capabilities: Sequence[str] = DEFAULT_CAPABILITIES,
    ):
        self.provider = provider
        self.packager = packager or TemplatePackager(provider)
        self.clock = clock or Clock()
        self.previewer = ChangeSetPreviewer(
            provider,
            self.clock,
            poll_interval=change_set_poll_interval,
            max_wait=change_set_max_wait,
        )
        self.resolver = NestedStackResolver(self.packager)
        self.stack_poll_interval = (
            config.STACK_POLL_INTERVAL if stack_poll_interval is None else stack_poll_interval
        )
        self.stack_max_wait = config.STACK_MAX_WAIT if stack_max_wait is None else stack_max_wait
        self.event_poll_interval = (
            config.EVENT_POLL_INTERVAL if event_poll_interval is None else event_poll_interval
        )
        self.concurrent_mode = concurrent_mode or config.CONCURRENT_DEPLOY_MODE
        self.tags = dict(tags or {})
        self.capabilities = tuple(capabilities)
        self._locks = SynchronizedDefaultDict(threading.Lock)

    def deploy(
        self,
        stack: StackIdentity,
        template: Template,
        parameters: Optional[ParameterSet] = None,
        progress: Optional[ProgressSink] = None,
        *,
        nested: Optional[NestedStackReference] = None,
        tags: Optional[dict[str, str]] = None,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> DeployResult:
        """
        Deploys the template with the given parameters to the stack, and waits until the stack reached
        a terminal state.

        :param stack: the target stack
        :param template: the rendered template
        :param parameters: the template parameters
        :param progress: receives the change set summary, the stack events, then the result or error
        :param nested: an optional addons stack, deployed as nested stack of the template
        :param tags: tags added to the default tags of the deployer
        :param cancel_event: stops the deployment when set. The running provider operation is not
            rolled back, a later deployment attaches to it.
        :param timeout: caller deadline in seconds, handled like a cancellation when reached
        :return: the result of the deployment
        :raises DeployError: see ``stackdeploy.deploy.exceptions``
        """
        operation = _Operation(
            stack=stack,
            progress=progress or ProgressSink(),
            cancel_event=cancel_event,
            deadline=self._deadline(timeout),
            tags={**self.tags, **(tags or {})},
        )
        try:
            lock = self._acquire(operation)
            try:
                result = self._deploy(operation, template, ParameterSet(parameters), nested)
            finally:
                lock.release()
        except DeployError as e:
            e.with_context(f"deploy stack {stack.name}")
            operation.progress.on_failure(stack, e)
            raise

        LOG.info("Deployment of stack %s finished: %s", stack.name, result.outcome.value)
        operation.progress.on_complete(result)
        return result

    def deploy_stack(
        self,
        configuration: StackConfiguration,
        region: str,
        account: Optional[str] = None,
        progress: Optional[ProgressSink] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> DeployResult:
        """Deploys the stack described by the given configuration."""
        return self.deploy(
            StackIdentity(configuration.stack_name(), region, account),
            configuration.template(),
            configuration.parameters(),
            progress,
            nested=configuration.nested_stack(),
            tags=configuration.tags(),
            cancel_event=cancel_event,
            timeout=timeout,
        )

    def delete(
        self,
        stack: StackIdentity,
        progress: Optional[ProgressSink] = None,
        *,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Deletes the stack, together with its nested stacks, and waits until it is gone.

        :return: True if the stack was deleted, False if it did not exist
        """
        operation = _Operation(
            stack=stack,
            progress=progress or ProgressSink(),
            cancel_event=cancel_event,
            deadline=self._deadline(timeout),
        )
        try:
            lock = self._acquire(operation)
            try:
                return self._delete(operation)
            finally:
                lock.release()
        except DeployError as e:
            e.with_context(f"delete stack {stack.name}")
            operation.progress.on_failure(stack, e)
            raise

    def _deadline(self, timeout: Optional[float]) -> Optional[float]:
        return self.clock.now() + timeout if timeout is not None else None

    def _acquire(self, operation: _Operation) -> threading.Lock:
        stack = operation.stack
        # keyed without the account, which callers may omit
        lock = self._locks[(stack.region, stack.name)]
        if lock.acquire(blocking=False):
            return lock
        if self.concurrent_mode == CONCURRENT_DEPLOY_REJECT:
            raise StackBusyError(f"another deployment of stack {stack.name} is in progress")

        LOG.info("Waiting for the running deployment of stack %s to finish", stack.name)
        while not lock.acquire(timeout=LOCK_RETRY_INTERVAL):
            check_cancelled(
                self.clock,
                operation.deadline,
                operation.cancel_event,
                f"the running deployment of stack {stack.name}",
            )
        return lock

    def _deploy(
        self,
        operation: _Operation,
        template: Template,
        parameters: ParameterSet,
        nested: Optional[NestedStackReference],
    ) -> DeployResult:
        stack = operation.stack
        packaged = self.packager.package(template, stack)
        if nested:
            parameters = self.resolver.resolve(stack, parameters, nested)

        recovered = False
        for _ in range(MAX_RECONCILE_PASSES):
            check_cancelled(
                self.clock, operation.deadline, operation.cancel_event, f"stack {stack.name}"
            )
            description = self._describe(stack)
            state = description.state if description else StackState.ABSENT
            LOG.debug("Stack %s is in state %s", stack.name, state.value)

            if state.in_progress:
                LOG.info(
                    "Stack %s has an operation in progress (%s), waiting for it to finish",
                    stack.name,
                    description.status,
                )
                self._wait(
                    operation, f"{description.status} of stack {stack.name}", last_state=state
                )
                continue

            if state == StackState.ABSENT:
                result = self._apply(operation, packaged, parameters, ChangeSetType.CREATE, None)
                if result is None:
                    continue
                if recovered and result.outcome == DeployOutcome.CREATED:
                    result = dataclasses.replace(
                        result, outcome=DeployOutcome.RECREATED_AFTER_ROLLBACK
                    )
                return result

            if state == StackState.ROLLBACK_COMPLETE:
                LOG.info(
                    "Stack %s is in state %s, deleting it before recreating it",
                    stack.name,
                    description.status,
                )
                self._delete_and_wait(operation)
                recovered = True
                continue

            if state == StackState.FAILED:
                raise DeploymentFailedError(
                    f"stack is in state {description.status} and cannot be deployed",
                    status=description.status,
                    status_reason=description.status_reason,
                )

            result = self._apply(operation, packaged, parameters, ChangeSetType.UPDATE, description)
            if result is not None:
                return result

        raise DeploymentFailedError(
            f"stack did not reach a deployable state after {MAX_RECONCILE_PASSES} attempts"
        )

    def _apply(
        self,
        operation: _Operation,
        packaged: PackagedTemplate,
        parameters: ParameterSet,
        change_set_type: str,
        live: Optional[StackDescription],
    ) -> Optional[DeployResult]:
        """
        Previews and executes a change set. Returns None if another operation on the stack got in
        the way.
        """
        stack = operation.stack
        try:
            change_set = self.previewer.preview(
                stack,
                packaged,
                parameters,
                change_set_type,
                tags=operation.tags,
                capabilities=self.capabilities,
                cancel_event=operation.cancel_event,
                deadline=operation.deadline,
            )
        except StackOperationInProgressError as e:
            LOG.info("Stack %s is busy (%s), attaching to the running operation", stack.name, e)
            return None

        try:
            diff = diff_parameters(live.parameters if live else None, parameters)
            if change_set.status == ChangeSetStatus.EMPTY:
                LOG.info("Stack %s is up to date", stack.name)
                return DeployResult(
                    outcome=DeployOutcome.NO_OP_UP_TO_DATE,
                    stack=stack,
                    status=live.status if live else None,
                    change_set=change_set,
                    parameter_diff=diff,
                    events=tuple(operation.events),
                    outputs=dict(live.outputs) if live else {},
                )

            operation.progress.on_change_set(change_set, diff)
            creating = change_set_type == ChangeSetType.CREATE
            reader = self._event_reader(stack)
            LOG.info("Executing change set %s of stack %s", change_set.name, stack.name)
            try:
                self.provider.execute_change_set(change_set.id, stack)
            except StackOperationInProgressError as e:
                LOG.debug("Change set %s is already executing: %s", change_set.name, e)
            except ProviderError as e:
                raise DeploymentFailedError(
                    f"unable to execute change set: {e.message}"
                ).with_context(f"execute change set {change_set.name}") from e

            final = self._wait(
                operation,
                f"{'creation' if creating else 'update'} of stack {stack.name}",
                reader=reader,
            )
            expected = StackStatus.CREATE_COMPLETE if creating else StackStatus.UPDATE_COMPLETE
            if final is None or final.status != expected:
                status = final.status if final else StackStatus.DELETE_COMPLETE
                raise DeploymentFailedError(
                    f"stack reached state {status}",
                    status=status,
                    status_reason=final.status_reason if final else None,
                    failed_events=reader.failed_events(),
                ).with_context(f"execute change set {change_set.name}")

            return DeployResult(
                outcome=DeployOutcome.CREATED if creating else DeployOutcome.UPDATED,
                stack=stack,
                status=final.status,
                change_set=change_set,
                parameter_diff=diff,
                events=tuple(operation.events),
                outputs=dict(final.outputs),
            )
        finally:
            self.previewer.discard(change_set)

    def _delete(self, operation: _Operation) -> bool:
        stack = operation.stack
        description = self._describe(stack)
        state = description.state if description else StackState.ABSENT
        if state == StackState.ABSENT:
            LOG.info("Stack %s does not exist", stack.name)
            return False
        if state.in_progress and state != StackState.DELETE_IN_PROGRESS:
            LOG.info(
                "Waiting for %s of stack %s to finish before deleting it",
                description.status,
                stack.name,
            )
            self._wait(operation, f"{description.status} of stack {stack.name}", last_state=state)
        self._delete_and_wait(operation)
        return True

    def _delete_and_wait(self, operation: _Operation) -> None:
        stack = operation.stack
        reader = self._event_reader(stack)
        try:
            self.provider.delete_stack(stack)
        except StackOperationInProgressError as e:
            LOG.debug("Deletion of stack %s is already in progress: %s", stack.name, e)
        except ProviderError as e:
            raise DeploymentFailedError(f"unable to delete stack: {e.message}") from e

        final = self._wait(
            operation, f"deletion of stack {stack.name}", reader=reader, target_absent=True
        )
        if final is not None and final.state != StackState.ABSENT:
            raise DeploymentFailedError(
                f"stack reached state {final.status}",
                status=final.status,
                status_reason=final.status_reason,
                failed_events=reader.failed_events(),
            ).with_context(f"delete stack {stack.name}")

    def _wait(
        self,
        operation: _Operation,
        description: str,
        reader: Optional[StackEventReader] = None,
        last_state: Optional[StackState] = None,
        target_absent: bool = False,
    ) -> Optional[StackDescription]:
        """Streams the stack events to the progress sink until the stack reached a terminal state."""
        reader = reader or self._event_reader(operation.stack)
        watch = _TerminalStateWatch(
            self, operation, description, last_state=last_state, target_absent=target_absent
        )
        events = reader.stream(
            watch, interval=self.event_poll_interval, cancel_event=operation.cancel_event
        )
        try:
            for event in events:
                operation.events.append(event)
                operation.progress.on_event(event)
        except DeploymentFailedError as e:
            if not e.failed_events:
                e.failed_events = tuple(reader.failed_events())
            raise
        except ProviderError as e:
            raise DeploymentFailedError(
                f"unable to observe stack: {e.message}", failed_events=reader.failed_events()
            ).with_context(f"wait for {description}") from e
        return watch.description

    def _event_reader(self, stack: StackIdentity) -> StackEventReader:
        reader = StackEventReader(
            self.provider, stack, self.clock, interval=self.event_poll_interval
        )
        try:
            return reader.start()
        except ProviderError as e:
            raise DeploymentFailedError(f"unable to read stack events: {e.message}") from e

    def _describe(self, stack: StackIdentity) -> Optional[StackDescription]:
        try:
            return self.provider.describe_stack(stack)
        except ProviderError as e:
            raise DeploymentFailedError(f"unable to describe stack: {e.message}") from e
