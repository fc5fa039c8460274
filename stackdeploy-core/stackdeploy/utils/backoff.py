import random

from pydantic import ConfigDict, Field
from pydantic.dataclasses import dataclass

from stackdeploy.utils.time import Clock


@dataclass(config=ConfigDict(arbitrary_types_allowed=True))
class ExponentialBackoff:
    """
    Exponential backoff with jitter, used to space out retries of throttled or otherwise transiently failing
    provider calls.

    Each call to ``next_backoff()`` returns the time to wait before the next attempt. The base interval starts at
    ``initial_interval`` and is multiplied by ``multiplier`` after every attempt (capped at ``max_interval``). The
    returned value is randomized within ``base * [1 - randomization_factor, 1 + randomization_factor]``.

    ``next_backoff()`` returns 0 once ``max_retries`` attempts have been handed out, or once more than
    ``max_time_elapsed`` seconds (measured with ``clock``) have passed since the first call. Callers treat 0 as
    "give up". Instances are stateful and not thread-safe, create one per retried call.
    """

    initial_interval: float = Field(0.5, title="Initial backoff interval in seconds", gt=0)
    randomization_factor: float = Field(0.5, title="Factor to randomize backoff", ge=0, le=1)
    multiplier: float = Field(1.5, title="Multiply interval by this factor each retry", gt=1)
    max_interval: float = Field(30.0, title="Maximum backoff interval in seconds", gt=0)
    max_retries: int = Field(-1, title="Max retry attempts (-1 for unlimited)", ge=-1)
    max_time_elapsed: float = Field(-1, title="Max total time in seconds (-1 for unlimited)", ge=-1)
    clock: Clock = Field(default_factory=Clock, repr=False)

    def __post_init__(self):
        self.retry_interval: float = 0
        self.retries: int = 0
        self.start_time: float = 0.0

    @property
    def elapsed_duration(self) -> float:
        return max(self.clock.now() - self.start_time, 0)

    @property
    def exhausted(self) -> bool:
        return self.max_retries >= 0 and self.retries >= self.max_retries

    def reset(self) -> None:
        self.retry_interval = 0
        self.retries = 0
        self.start_time = 0

    def next_backoff(self) -> float:
        if self.retry_interval == 0:
            self.retry_interval = self.initial_interval
            self.start_time = self.clock.now()

        self.retries += 1

        if self.max_retries >= 0 and self.retries > self.max_retries:
            return 0

        if self.max_time_elapsed > 0 and self.elapsed_duration > self.max_time_elapsed:
            return 0

        next_interval = self.retry_interval
        if self.randomization_factor > 0:
            next_interval = random.uniform(
                self.retry_interval * (1 - self.randomization_factor),
                self.retry_interval * (1 + self.randomization_factor),
            )

        self.retry_interval = min(self.max_interval, self.retry_interval * self.multiplier)

        return next_interval
