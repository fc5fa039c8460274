"""Concurrency synchronization and polling utilities"""

import functools
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Optional, TypeVar

from stackdeploy.utils.time import Clock

T = TypeVar("T")


class ShortCircuitWaitException(Exception):
    """raise to immediately stop waiting, e.g. when an operation permanently failed"""

    pass


class PollCancelled(Exception):
    """raised by the polling utilities when the caller-supplied cancel event is set"""

    pass


_system_clock = Clock()


def poll_condition(
    condition: Callable[[], bool],
    timeout: float = None,
    interval: float = 0.5,
    cancel_event: Optional[threading.Event] = None,
    clock: Optional[Clock] = None,
) -> bool:
    """
    Poll evaluates the given condition until a truthy value is returned. It does this every `interval` seconds
    (0.5 by default), until the timeout (in seconds, if any) is reached.

    Poll returns True once `condition()` returns a truthy value, or False if the timeout is reached. If the given
    `cancel_event` is set, polling stops and ``PollCancelled`` is raised. Exceptions raised by the condition are
    propagated to the caller, except ``ShortCircuitWaitException`` which makes poll return False.
    """
    clock = clock or _system_clock
    deadline = clock.now() + timeout if timeout is not None else None

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise PollCancelled()
        try:
            if condition():
                return True
        except ShortCircuitWaitException:
            return False

        if deadline is not None:
            remaining = deadline - clock.now()
            if remaining <= 0:
                return False
            clock.sleep(min(interval, remaining), cancel_event)
        else:
            clock.sleep(interval, cancel_event)


def synchronized(lock=None):
    """
    Synchronization decorator as described in
    http://blog.dscpl.com.au/2014/01/the-missing-synchronized-decorator.html.
    """

    def _decorator(wrapped):
        @functools.wraps(wrapped)
        def _wrapper(*args, **kwargs):
            with lock:
                return wrapped(*args, **kwargs)

        return _wrapper

    return _decorator


class SynchronizedDefaultDict(defaultdict):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._lock = threading.RLock()

    def fromkeys(self, keys, value=None):
        with self._lock:
            return super().fromkeys(keys, value)

    def __getitem__(self, key):
        with self._lock:
            return super().__getitem__(key)

    def __setitem__(self, key, value):
        with self._lock:
            super().__setitem__(key, value)

    def __delitem__(self, key):
        with self._lock:
            super().__delitem__(key)

    def __iter__(self):
        with self._lock:
            return super().__iter__()

    def __len__(self):
        with self._lock:
            return super().__len__()

    def __str__(self):
        with self._lock:
            return super().__str__()
