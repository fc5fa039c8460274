import logging

import pytest

from stackdeploy.deploy.models import StackIdentity
from stackdeploy.logging.format import (
    AddFormattedAttributes,
    DefaultFormatter,
    compress_logger_name,
)


@pytest.mark.parametrize(
    "name,length,expected",
    [
        ("log", 1, "l"),
        ("log", 3, "log"),
        ("log", 5, "log"),
        ("stackdeploy.deploy.engine", 1, "s.d.e"),
        ("stackdeploy.deploy.engine", 11, "s.d.engine"),
        ("stackdeploy.deploy.engine", 17, "s.deploy.engine"),
        ("stackdeploy.deploy.engine", 25, "stackdeploy.deploy.engine"),
        ("stackdeploy.deploy.changeset", 8, "s.d.chan"),
    ],
)
def test_compress_logger_name(name, length, expected):
    assert compress_logger_name(name, length) == expected


def _record(level=logging.WARNING, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="stackdeploy.deploy.changeset",
        level=level,
        pathname=__file__,
        lineno=1,
        msg="change set %s failed",
        args=("cs-1",),
        exc_info=None,
    )
    record.__dict__.update(extra)
    return record


def test_formatted_attributes():
    record = _record()

    assert AddFormattedAttributes(max_name_len=20).filter(record)

    assert record.sd_level == "WARN"
    assert record.sd_name == "s.deploy.changeset"
    assert record.sd_stack == ""

    formatted = DefaultFormatter().format(record)
    assert " WARN [s.deploy.changeset" in formatted
    assert formatted.endswith("] change set cs-1 failed")


@pytest.mark.parametrize("stack", ["app-test-api", StackIdentity("app-test-api", "eu-west-1")])
def test_stack_prefix(stack):
    record = _record(level=logging.INFO, stack=stack)

    AddFormattedAttributes().filter(record)

    assert record.sd_level == "INFO"
    assert DefaultFormatter().format(record).endswith("] app-test-api: change set cs-1 failed")
