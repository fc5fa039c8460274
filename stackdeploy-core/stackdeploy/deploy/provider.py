"""
Adapter between the deployment engine and the stack provider (AWS CloudFormation and S3).

The engine only talks to the abstract ``StackProvider``. ``CloudFormationStackProvider`` implements it on top of
boto3 clients from a ``ClientFactory``, translates ``ClientError`` codes into ``ProviderError`` types, and retries
throttling and connection errors with exponential backoff.
"""

import abc
import logging
import re
from typing import Callable, Optional, Sequence, TypeVar
from urllib.parse import quote

from botocore.exceptions import ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from stackdeploy import config
from stackdeploy.aws.connect import ClientFactory
from stackdeploy.deploy.exceptions import ProviderError, StackOperationInProgressError
from stackdeploy.deploy.models import (
    ChangeSet,
    ChangeSetStatus,
    PackagedTemplate,
    ParameterSet,
    ResourceChange,
    StackDescription,
    StackEvent,
    StackIdentity,
)
from stackdeploy.utils.backoff import ExponentialBackoff
from stackdeploy.utils.time import Clock, timestamp_to_utc

LOG = logging.getLogger(__name__)

T = TypeVar("T")

# error codes of throttled or temporarily failing requests, the only ones that are retried
TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServiceUnavailable",
    "InternalFailure",
    "RequestTimeout",
}

# status reasons of a failed change set which mean that the template and parameters match the deployed stack
EMPTY_CHANGE_SET_REASONS = (
    "The submitted information didn't contain changes",
    "No updates are to be performed",
)

_IN_PROGRESS_MESSAGE = re.compile(r"_IN_PROGRESS state")
_DOES_NOT_EXIST_MESSAGE = re.compile(r"does not exist")


def is_empty_change_set_reason(reason: Optional[str]) -> bool:
    return bool(reason) and any(r in reason for r in EMPTY_CHANGE_SET_REASONS)


def error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def error_message(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Message", "")


class StackProvider(abc.ABC):
    """
    The provider operations consumed by the deployment engine. Implementations raise ``ProviderError`` for
    failed calls, and ``StackOperationInProgressError`` when a mutating call collided with another operation.
    """

    @abc.abstractmethod
    def create_change_set(
        self,
        stack: StackIdentity,
        name: str,
        change_set_type: str,
        packaged: PackagedTemplate,
        parameters: ParameterSet,
        tags: Optional[dict[str, str]] = None,
        capabilities: Sequence[str] = (),
        description: Optional[str] = None,
    ) -> str:
        """Requests a change set and returns its id."""

    @abc.abstractmethod
    def describe_change_set(self, change_set_id: str, stack: StackIdentity) -> ChangeSet:
        pass

    @abc.abstractmethod
    def execute_change_set(self, change_set_id: str, stack: StackIdentity) -> None:
        pass

    @abc.abstractmethod
    def delete_change_set(self, change_set_id: str, stack: StackIdentity) -> None:
        pass

    @abc.abstractmethod
    def describe_stack(self, stack: StackIdentity) -> Optional[StackDescription]:
        """Returns the live stack, or None if the stack does not exist."""

    @abc.abstractmethod
    def describe_stack_events(
        self,
        stack: StackIdentity,
        since_event_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StackEvent]:
        """
        Returns the events of the stack, newest first. If ``since_event_id`` is given, only the events newer than
        that event are returned. At most ``limit`` events are returned, if given. An absent stack has no events.
        """

    @abc.abstractmethod
    def delete_stack(self, stack: StackIdentity) -> None:
        pass

    @abc.abstractmethod
    def put_object(self, bucket: str, key: str, body: bytes, region: Optional[str] = None) -> str:
        """Stores the given object and returns its URL. Never retried."""


class CloudFormationStackProvider(StackProvider):
    def __init__(
        self,
        client_factory: ClientFactory,
        clock: Optional[Clock] = None,
        max_retries: Optional[int] = None,
        retry_interval: Optional[float] = None,
    ):
        self.client_factory = client_factory
        self.clock = clock or Clock()
        self.max_retries = config.PROVIDER_MAX_RETRIES if max_retries is None else max_retries
        self.retry_interval = (
            config.PROVIDER_RETRY_INTERVAL if retry_interval is None else retry_interval
        )

    def _cloudformation(self, stack: StackIdentity):
        return self.client_factory(region_name=stack.region).cloudformation

    def _call(self, operation: str, func: Callable[..., T], **kwargs) -> T:
        """Invokes the given client method, retrying transient errors and translating client errors."""
        backoff = ExponentialBackoff(
            initial_interval=self.retry_interval,
            max_retries=self.max_retries,
            clock=self.clock,
        )
        while True:
            try:
                return func(**kwargs)
            except ClientError as e:
                code = error_code(e)
                if code not in TRANSIENT_ERROR_CODES:
                    raise self._translate(e, operation) from e
                last_error, last_code = e, code
            except (BotoConnectionError, HTTPClientError) as e:
                last_error, last_code = e, None

            delay = backoff.next_backoff()
            if delay <= 0:
                raise ProviderError(
                    f"{operation} failed after {backoff.retries - 1} retries: {last_error}",
                    code=last_code,
                    operation=operation,
                ) from last_error
            LOG.debug(
                "Retrying %s in %.2fs after transient error: %s", operation, delay, last_error
            )
            self.clock.sleep(delay)

    @staticmethod
    def _translate(error: ClientError, operation: str) -> ProviderError:
        code = error_code(error)
        message = error_message(error) or str(error)
        if code in ("AlreadyExistsException", "InvalidChangeSetStatus"):
            return StackOperationInProgressError(message, code=code, operation=operation)
        if code == "ValidationError" and _IN_PROGRESS_MESSAGE.search(message):
            return StackOperationInProgressError(message, code=code, operation=operation)
        return ProviderError(message, code=code, operation=operation)

    def create_change_set(
        self,
        stack: StackIdentity,
        name: str,
        change_set_type: str,
        packaged: PackagedTemplate,
        parameters: ParameterSet,
        tags: Optional[dict[str, str]] = None,
        capabilities: Sequence[str] = (),
        description: Optional[str] = None,
    ) -> str:
        request = {
            "StackName": stack.name,
            "ChangeSetName": name,
            "ChangeSetType": change_set_type,
            "Parameters": parameters.to_provider(),
            "Tags": [{"Key": k, "Value": v} for k, v in (tags or {}).items()],
            **packaged.to_provider(),
        }
        if capabilities:
            request["Capabilities"] = list(capabilities)
        if description:
            request["Description"] = description

        client = self._cloudformation(stack)
        response = self._call("CreateChangeSet", client.create_change_set, **request)
        return response["Id"]

    def describe_change_set(self, change_set_id: str, stack: StackIdentity) -> ChangeSet:
        client = self._cloudformation(stack)
        kwargs = {"ChangeSetName": change_set_id, "StackName": stack.name}
        changes = []
        while True:
            response = self._call("DescribeChangeSet", client.describe_change_set, **kwargs)
            for change in response.get("Changes") or []:
                resource = change.get("ResourceChange") or {}
                changes.append(
                    ResourceChange(
                        action=resource.get("Action", ""),
                        logical_resource_id=resource.get("LogicalResourceId", ""),
                        resource_type=resource.get("ResourceType"),
                        replacement=resource.get("Replacement"),
                    )
                )
            if not response.get("NextToken"):
                break
            kwargs["NextToken"] = response["NextToken"]

        reason = response.get("StatusReason")
        return ChangeSet(
            id=response.get("ChangeSetId") or change_set_id,
            stack=stack,
            change_set_type=response.get("ChangeSetType", ""),
            status=self._change_set_status(response.get("Status"), reason),
            status_reason=reason,
            changes=tuple(changes),
        )

    @staticmethod
    def _change_set_status(status: Optional[str], reason: Optional[str]) -> ChangeSetStatus:
        if status in ("CREATE_PENDING", "CREATE_IN_PROGRESS"):
            return ChangeSetStatus.PENDING
        if status == "CREATE_COMPLETE":
            return ChangeSetStatus.READY
        if status == "FAILED" and is_empty_change_set_reason(reason):
            return ChangeSetStatus.EMPTY
        return ChangeSetStatus.FAILED

    def execute_change_set(self, change_set_id: str, stack: StackIdentity) -> None:
        client = self._cloudformation(stack)
        self._call(
            "ExecuteChangeSet",
            client.execute_change_set,
            ChangeSetName=change_set_id,
            StackName=stack.name,
        )

    def delete_change_set(self, change_set_id: str, stack: StackIdentity) -> None:
        client = self._cloudformation(stack)
        self._call(
            "DeleteChangeSet",
            client.delete_change_set,
            ChangeSetName=change_set_id,
            StackName=stack.name,
        )

    def describe_stack(self, stack: StackIdentity) -> Optional[StackDescription]:
        client = self._cloudformation(stack)
        try:
            response = self._call("DescribeStacks", client.describe_stacks, StackName=stack.name)
        except ProviderError as e:
            if e.code == "ValidationError" and _DOES_NOT_EXIST_MESSAGE.search(e.message):
                return None
            raise
        stacks = response.get("Stacks") or []
        if not stacks:
            return None
        details = stacks[0]
        return StackDescription(
            stack=stack,
            status=details["StackStatus"],
            status_reason=details.get("StackStatusReason"),
            stack_id=details.get("StackId"),
            parameters=ParameterSet.from_provider(details.get("Parameters")),
            outputs={
                o["OutputKey"]: o.get("OutputValue", "") for o in details.get("Outputs") or []
            },
        )

    def describe_stack_events(
        self,
        stack: StackIdentity,
        since_event_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[StackEvent]:
        client = self._cloudformation(stack)
        kwargs = {"StackName": stack.name}
        events = []
        while True:
            try:
                response = self._call(
                    "DescribeStackEvents", client.describe_stack_events, **kwargs
                )
            except ProviderError as e:
                if e.code == "ValidationError" and _DOES_NOT_EXIST_MESSAGE.search(e.message):
                    return events
                raise
            for raw in response.get("StackEvents") or []:
                if since_event_id and raw["EventId"] == since_event_id:
                    return events
                if limit is not None and len(events) >= limit:
                    return events
                events.append(
                    StackEvent(
                        event_id=raw["EventId"],
                        timestamp=timestamp_to_utc(raw["Timestamp"]),
                        logical_resource_id=raw.get("LogicalResourceId", ""),
                        status=raw.get("ResourceStatus", ""),
                        status_reason=raw.get("ResourceStatusReason"),
                        resource_type=raw.get("ResourceType"),
                        physical_resource_id=raw.get("PhysicalResourceId"),
                        stack_name=raw.get("StackName"),
                    )
                )
            if not response.get("NextToken"):
                return events
            kwargs["NextToken"] = response["NextToken"]

    def delete_stack(self, stack: StackIdentity) -> None:
        client = self._cloudformation(stack)
        self._call("DeleteStack", client.delete_stack, StackName=stack.name)

    def put_object(self, bucket: str, key: str, body: bytes, region: Optional[str] = None) -> str:
        factory = self.client_factory(region_name=region)
        try:
            factory.s3.put_object(Bucket=bucket, Key=key, Body=body)
        except ClientError as e:
            raise self._translate(e, "PutObject") from e
        except (BotoConnectionError, HTTPClientError) as e:
            raise ProviderError(f"PutObject failed: {e}", operation="PutObject") from e
        return self.object_url(bucket, key, factory.region_name)

    def object_url(self, bucket: str, key: str, region: str) -> str:
        if self.client_factory.endpoint_url:
            return f"{self.client_factory.endpoint_url.rstrip('/')}/{bucket}/{quote(key)}"
        return f"https://{bucket}.s3.{region}.amazonaws.com/{quote(key)}"
