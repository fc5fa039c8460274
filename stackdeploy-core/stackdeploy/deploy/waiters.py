"""Blocking wait functions for asynchronous provider operations, bounded by an interval and deadlines."""

import threading
from collections.abc import Callable
from typing import Optional

from stackdeploy.deploy.exceptions import DeploymentCancelledError, StackTimeoutError
from stackdeploy.utils.sync import PollCancelled, poll_condition
from stackdeploy.utils.time import Clock


def check_cancelled(
    clock: Clock,
    deadline: Optional[float],
    cancel_event: Optional[threading.Event],
    description: str,
) -> None:
    """Raises ``DeploymentCancelledError`` if the caller cancelled or the caller's deadline has passed."""
    if cancel_event is not None and cancel_event.is_set():
        raise DeploymentCancelledError(f"cancelled while waiting for {description}")
    if deadline is not None and clock.now() >= deadline:
        raise DeploymentCancelledError(f"deadline reached while waiting for {description}")


def wait_for(
    condition: Callable[[], bool],
    *,
    clock: Clock,
    interval: float,
    max_wait: float,
    deadline: Optional[float] = None,
    cancel_event: Optional[threading.Event] = None,
    description: str = "operation",
) -> None:
    """
    Polls ``condition`` every ``interval`` seconds until it returns True.

    :param max_wait: internal bound in seconds, exceeding it raises ``StackTimeoutError``
    :param deadline: caller deadline (``clock.now()`` based), reaching it raises ``DeploymentCancelledError``
    :param cancel_event: caller cancellation, setting it raises ``DeploymentCancelledError``
    """
    check_cancelled(clock, deadline, cancel_event, description)
    timeout = max_wait
    if deadline is not None:
        timeout = min(timeout, deadline - clock.now())

    try:
        if poll_condition(
            condition,
            timeout=max(timeout, 0),
            interval=interval,
            cancel_event=cancel_event,
            clock=clock,
        ):
            return
    except PollCancelled:
        raise DeploymentCancelledError(f"cancelled while waiting for {description}")

    check_cancelled(clock, deadline, cancel_event, description)
    raise StackTimeoutError(f"timed out after {max_wait:g}s waiting for {description}")
