import dataclasses
import os
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from stackdeploy.constants import ADDONS_TEMPLATE_URL_PARAM_KEY
from stackdeploy.utils.strings import sha256_hex, to_bytes


class StackStatus(str):
    """Raw stack statuses as reported by CloudFormation."""

    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_FAILED = "CREATE_FAILED"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_FAILED = "ROLLBACK_FAILED"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    DELETE_FAILED = "DELETE_FAILED"
    DELETE_COMPLETE = "DELETE_COMPLETE"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    UPDATE_FAILED = "UPDATE_FAILED"
    UPDATE_ROLLBACK_IN_PROGRESS = "UPDATE_ROLLBACK_IN_PROGRESS"
    UPDATE_ROLLBACK_FAILED = "UPDATE_ROLLBACK_FAILED"
    UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS = "UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS"
    UPDATE_ROLLBACK_COMPLETE = "UPDATE_ROLLBACK_COMPLETE"
    REVIEW_IN_PROGRESS = "REVIEW_IN_PROGRESS"
    IMPORT_IN_PROGRESS = "IMPORT_IN_PROGRESS"
    IMPORT_COMPLETE = "IMPORT_COMPLETE"
    IMPORT_ROLLBACK_IN_PROGRESS = "IMPORT_ROLLBACK_IN_PROGRESS"
    IMPORT_ROLLBACK_FAILED = "IMPORT_ROLLBACK_FAILED"
    IMPORT_ROLLBACK_COMPLETE = "IMPORT_ROLLBACK_COMPLETE"


class ChangeSetType(str):
    CREATE = "CREATE"
    UPDATE = "UPDATE"


class StackState(str, Enum):
    """
    The condition of a stack as seen by the deployment engine. Several raw provider statuses collapse onto one
    state, see ``StackState.from_status``.
    """

    ABSENT = "ABSENT"
    CREATE_IN_PROGRESS = "CREATE_IN_PROGRESS"
    CREATE_COMPLETE = "CREATE_COMPLETE"
    UPDATE_IN_PROGRESS = "UPDATE_IN_PROGRESS"
    UPDATE_COMPLETE = "UPDATE_COMPLETE"
    ROLLBACK_IN_PROGRESS = "ROLLBACK_IN_PROGRESS"
    ROLLBACK_COMPLETE = "ROLLBACK_COMPLETE"
    DELETE_IN_PROGRESS = "DELETE_IN_PROGRESS"
    FAILED = "FAILED"

    @classmethod
    def from_status(cls, status: Optional[str]) -> "StackState":
        if not status:
            return cls.ABSENT
        return _STATUS_TO_STATE.get(status, cls.FAILED)

    @property
    def in_progress(self) -> bool:
        return self in (
            StackState.CREATE_IN_PROGRESS,
            StackState.UPDATE_IN_PROGRESS,
            StackState.ROLLBACK_IN_PROGRESS,
            StackState.DELETE_IN_PROGRESS,
        )

    @property
    def healthy(self) -> bool:
        """Whether a stack in this state exists and accepts updates."""
        return self in (StackState.CREATE_COMPLETE, StackState.UPDATE_COMPLETE)


_STATUS_TO_STATE = {
    # a stack in review was created by a change set that was never executed, it has no resources yet
    StackStatus.REVIEW_IN_PROGRESS: StackState.ABSENT,
    StackStatus.DELETE_COMPLETE: StackState.ABSENT,
    StackStatus.CREATE_IN_PROGRESS: StackState.CREATE_IN_PROGRESS,
    StackStatus.CREATE_COMPLETE: StackState.CREATE_COMPLETE,
    StackStatus.UPDATE_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.UPDATE_COMPLETE_CLEANUP_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.UPDATE_ROLLBACK_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.UPDATE_ROLLBACK_COMPLETE_CLEANUP_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.IMPORT_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.IMPORT_ROLLBACK_IN_PROGRESS: StackState.UPDATE_IN_PROGRESS,
    StackStatus.UPDATE_COMPLETE: StackState.UPDATE_COMPLETE,
    StackStatus.UPDATE_ROLLBACK_COMPLETE: StackState.UPDATE_COMPLETE,
    StackStatus.IMPORT_COMPLETE: StackState.UPDATE_COMPLETE,
    StackStatus.IMPORT_ROLLBACK_COMPLETE: StackState.UPDATE_COMPLETE,
    StackStatus.ROLLBACK_IN_PROGRESS: StackState.ROLLBACK_IN_PROGRESS,
    StackStatus.ROLLBACK_COMPLETE: StackState.ROLLBACK_COMPLETE,
    StackStatus.DELETE_IN_PROGRESS: StackState.DELETE_IN_PROGRESS,
    StackStatus.CREATE_FAILED: StackState.FAILED,
    StackStatus.ROLLBACK_FAILED: StackState.FAILED,
    StackStatus.DELETE_FAILED: StackState.FAILED,
    StackStatus.UPDATE_FAILED: StackState.FAILED,
    StackStatus.UPDATE_ROLLBACK_FAILED: StackState.FAILED,
    StackStatus.IMPORT_ROLLBACK_FAILED: StackState.FAILED,
}


class ChangeSetStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"
    EMPTY = "EMPTY"
    FAILED = "FAILED"


class DeployOutcome(str, Enum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    NO_OP_UP_TO_DATE = "NO_OP_UP_TO_DATE"
    RECREATED_AFTER_ROLLBACK = "RECREATED_AFTER_ROLLBACK"


@dataclasses.dataclass(frozen=True)
class StackIdentity:
    """The deployment target of a stack: its name, the region, and (optionally) the account it lives in."""

    name: str
    region: str
    account: Optional[str] = None

    def __str__(self):
        if self.account:
            return f"{self.account}/{self.region}/{self.name}"
        return f"{self.region}/{self.name}"


class Template:
    """
    A rendered template, treated as an opaque document. The fingerprint identifies the content and is used to
    address uploaded copies of the template.
    """

    def __init__(self, body: Union[str, bytes]):
        self._body = to_bytes(body)

    @classmethod
    def from_file(cls, path: Union[str, os.PathLike]) -> "Template":
        with open(path, "rb") as f:
            return cls(f.read())

    @property
    def body(self) -> bytes:
        return self._body

    @property
    def size(self) -> int:
        return len(self._body)

    @property
    def fingerprint(self) -> str:
        return sha256_hex(self._body)

    def __eq__(self, other):
        return isinstance(other, Template) and self._body == other._body

    def __hash__(self):
        return hash(self._body)

    def __repr__(self):
        return f"Template(size={self.size}, fingerprint={self.fingerprint[:12]})"


class ParameterSet(Mapping[str, str]):
    """
    An ordered, immutable mapping of parameter names to values. Two parameter sets are equal if they contain the
    same keys with the same values, regardless of the order.
    """

    def __init__(self, parameters: Union[Mapping[str, str], Iterable[tuple[str, str]], None] = None):
        items = parameters.items() if isinstance(parameters, Mapping) else (parameters or [])
        values = {}
        for key, value in items:
            if key in values:
                raise ValueError(f"Duplicate parameter name {key}")
            values[key] = "" if value is None else str(value)
        self._values = values

    @classmethod
    def from_provider(cls, parameters: Optional[list[dict]]) -> "ParameterSet":
        return cls((p["ParameterKey"], p.get("ParameterValue")) for p in parameters or [])

    def to_provider(self) -> list[dict]:
        return [{"ParameterKey": k, "ParameterValue": v} for k, v in self._values.items()]

    def merge(self, other: Mapping[str, str]) -> "ParameterSet":
        """Returns a new parameter set with the values of ``other`` added or overriding existing values."""
        values = dict(self._values)
        values.update({k: str(v) for k, v in other.items()})
        return ParameterSet(values)

    def __getitem__(self, key: str) -> str:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self):
        return f"ParameterSet({self._values!r})"


@dataclasses.dataclass(frozen=True)
class ParameterDiff:
    added: dict[str, str] = dataclasses.field(default_factory=dict)
    removed: dict[str, str] = dataclasses.field(default_factory=dict)
    changed: dict[str, tuple[str, str]] = dataclasses.field(default_factory=dict)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.changed)

    def summary(self) -> list[str]:
        lines = [f"+ {k}={v}" for k, v in self.added.items()]
        lines += [f"- {k}" for k in self.removed]
        lines += [f"~ {k}: {old} -> {new}" for k, (old, new) in self.changed.items()]
        return lines


@dataclasses.dataclass(frozen=True)
class PackagedTemplate:
    """A template ready for submission: either the inline body, or the URL of an uploaded copy."""

    template: Template
    url: Optional[str] = None

    @property
    def inline(self) -> bool:
        return self.url is None

    def to_provider(self) -> dict:
        if self.url:
            return {"TemplateURL": self.url}
        return {"TemplateBody": self.template.body.decode("utf-8")}


@dataclasses.dataclass(frozen=True)
class ResourceChange:
    action: str
    logical_resource_id: str
    resource_type: Optional[str] = None
    replacement: Optional[str] = None


@dataclasses.dataclass(frozen=True)
class ChangeSet:
    id: str
    stack: StackIdentity
    change_set_type: str
    status: ChangeSetStatus
    status_reason: Optional[str] = None
    changes: tuple[ResourceChange, ...] = ()

    @property
    def name(self) -> str:
        # change set ARNs end with "changeSet/<name>/<uuid>"
        if ":changeSet/" in self.id:
            return self.id.split(":changeSet/", 1)[1].split("/", 1)[0]
        return self.id


@dataclasses.dataclass(frozen=True)
class StackDescription:
    stack: StackIdentity
    status: str
    status_reason: Optional[str] = None
    stack_id: Optional[str] = None
    parameters: ParameterSet = dataclasses.field(default_factory=ParameterSet)
    outputs: dict[str, str] = dataclasses.field(default_factory=dict)

    @property
    def state(self) -> StackState:
        return StackState.from_status(self.status)


@dataclasses.dataclass(frozen=True)
class StackEvent:
    event_id: str
    timestamp: datetime
    logical_resource_id: str
    status: str
    status_reason: Optional[str] = None
    resource_type: Optional[str] = None
    physical_resource_id: Optional[str] = None
    stack_name: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.status.endswith("_FAILED")


@dataclasses.dataclass(frozen=True)
class NestedStackReference:
    """
    An addons stack deployed as a nested resource of a parent stack. The parent template declares the nested
    stack resource and receives the location of the child template through ``url_parameter``.
    """

    template: Template
    parameters: ParameterSet = dataclasses.field(default_factory=ParameterSet)
    url_parameter: str = ADDONS_TEMPLATE_URL_PARAM_KEY


@dataclasses.dataclass(frozen=True)
class DeployResult:
    outcome: DeployOutcome
    stack: StackIdentity
    status: Optional[str] = None
    change_set: Optional[ChangeSet] = None
    parameter_diff: ParameterDiff = dataclasses.field(default_factory=ParameterDiff)
    events: tuple[StackEvent, ...] = ()
    outputs: dict[str, str] = dataclasses.field(default_factory=dict)
