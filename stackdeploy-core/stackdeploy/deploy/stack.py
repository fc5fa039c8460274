"""
Stack configurations: the uniform interface through which the engine consumes the stacks of an application
(environments, services, jobs, pipelines), and the naming and tagging conventions for those stacks.
"""

import abc
from collections.abc import Mapping
from typing import Optional

from stackdeploy.constants import APPLICATION_TAG_KEY, ENVIRONMENT_TAG_KEY, WORKLOAD_TAG_KEY
from stackdeploy.deploy.models import NestedStackReference, ParameterSet, Template


def environment_stack_name(app: str, env: str) -> str:
    return f"{app}-{env}"


def workload_stack_name(app: str, env: str, name: str) -> str:
    return f"{app}-{env}-{name}"


def workload_tags(app: str, env: str, name: Optional[str] = None) -> dict[str, str]:
    """Returns the tags identifying the stack of an environment, or of a workload if ``name`` is given."""
    tags = {APPLICATION_TAG_KEY: app, ENVIRONMENT_TAG_KEY: env}
    if name:
        tags[WORKLOAD_TAG_KEY] = name
    return tags


class StackConfiguration(abc.ABC):
    @abc.abstractmethod
    def stack_name(self) -> str:
        pass

    @abc.abstractmethod
    def template(self) -> Template:
        pass

    @abc.abstractmethod
    def parameters(self) -> ParameterSet:
        pass

    def tags(self) -> dict[str, str]:
        return {}

    def nested_stack(self) -> Optional[NestedStackReference]:
        return None


class StaticStackConfiguration(StackConfiguration):
    """A stack configuration with a pre-rendered template."""

    def __init__(
        self,
        stack_name: str,
        template: Template,
        parameters: Optional[Mapping[str, str]] = None,
        tags: Optional[Mapping[str, str]] = None,
        nested_stack: Optional[NestedStackReference] = None,
    ):
        self._stack_name = stack_name
        self._template = template
        self._parameters = ParameterSet(parameters)
        self._tags = dict(tags or {})
        self._nested_stack = nested_stack

    def stack_name(self) -> str:
        return self._stack_name

    def template(self) -> Template:
        return self._template

    def parameters(self) -> ParameterSet:
        return self._parameters

    def tags(self) -> dict[str, str]:
        return dict(self._tags)

    def nested_stack(self) -> Optional[NestedStackReference]:
        return self._nested_stack
