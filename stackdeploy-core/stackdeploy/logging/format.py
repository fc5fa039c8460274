"""
Log formatting for stackdeploy. A formatted record looks like::

    2024-01-01T12:30:00.123  INFO [s.deploy.progress       ] app-test-api: Service UPDATE_COMPLETE

Records logged with ``extra={"stack": ...}`` are prefixed with the stack they are about, which keeps the output
of concurrent deployments apart.
"""

import logging

MAX_NAME_LEN = 24

LOG_FORMAT = (
    "%(asctime)s.%(msecs)03d %(sd_level)5s "
    f"[%(sd_name)-{MAX_NAME_LEN}s] %(sd_stack)s%(message)s"
)
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

# levels whose standard name is longer than five characters
SHORT_LEVEL_NAMES = {
    logging.CRITICAL: "FATAL",
    logging.WARNING: "WARN",
}


class DefaultFormatter(logging.Formatter):
    def __init__(self, fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT):
        super().__init__(fmt=fmt, datefmt=datefmt)


class AddFormattedAttributes(logging.Filter):
    """
    Adds the attributes ``LOG_FORMAT`` refers to:

    - sd_level: the level name, at most five characters long
    - sd_name: the logger name compressed to ``max_name_len`` (e.g., ``s.deploy.engine``)
    - sd_stack: ``"<stack name>: "`` if the record has a ``stack`` attribute, an empty string otherwise.
      The attribute may be a stack name or a ``StackIdentity``.
    """

    def __init__(self, max_name_len: int = MAX_NAME_LEN):
        super().__init__()
        self.max_name_len = max_name_len
        self._names: dict[str, str] = {}

    def filter(self, record):
        record.sd_level = SHORT_LEVEL_NAMES.get(record.levelno, record.levelname)
        record.sd_name = self._short_name(record.name)
        stack = getattr(record, "stack", None)
        stack_name = getattr(stack, "name", stack)
        record.sd_stack = f"{stack_name}: " if stack_name else ""
        return True

    def _short_name(self, name: str) -> str:
        short = self._names.get(name)
        if short is None:
            short = self._names[name] = compress_logger_name(name, self.max_name_len)
        return short


def compress_logger_name(name: str, length: int) -> str:
    """
    Shortens a dotted logger name to ``length`` characters by abbreviating its packages to their first letter,
    outermost first, e.g. ``stackdeploy.deploy.engine`` becomes ``s.deploy.engine`` and then ``s.d.engine``. If
    that is not enough, the last part is cut, but never to less than one character.
    """
    if len(name) <= length:
        return name

    parts = name.split(".")
    for i in range(len(parts) - 1):
        parts[i] = parts[i][:1]
        compressed = ".".join(parts)
        if len(compressed) <= length:
            return compressed

    prefix = "".join(f"{part}." for part in parts[:-1])
    return prefix + parts[-1][: max(1, length - len(prefix))]
