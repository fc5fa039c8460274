import logging
import os
from typing import Optional, Union

from stackdeploy.constants import (
    CONCURRENT_DEPLOY_REJECT,
    CONCURRENT_DEPLOY_WAIT,
    DEFAULT_ARTIFACT_PREFIX,
    DEFAULT_TEMPLATE_INLINE_SIZE_LIMIT,
    FALSE_STRINGS,
    LOG_LEVELS,
    TRACE_LOG_LEVELS,
    TRUE_STRINGS,
)


def eval_log_type(env_var_name: str) -> Union[str, bool]:
    """Get the log type from environment variable"""
    log_type = os.environ.get(env_var_name, "").lower().strip()
    return log_type if log_type in LOG_LEVELS else False


def parse_boolean_env(env_var_name: str) -> Optional[bool]:
    """Parse the value of the given env variable and return True/False, or None if it is not a boolean value."""
    value = os.environ.get(env_var_name, "").lower().strip()
    if value in TRUE_STRINGS:
        return True
    if value in FALSE_STRINGS:
        return False
    return None


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def is_env_not_false(env_var_name: str) -> bool:
    """Whether the given environment variable is empty or has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() not in FALSE_STRINGS


def env_float(env_var_name: str, default: float) -> float:
    """Returns the value of the given environment variable as float, or the default if it is unset or empty."""
    value = os.environ.get(env_var_name, "").strip()
    return float(value) if value else default


def env_int(env_var_name: str, default: int) -> int:
    """Returns the value of the given environment variable as int, or the default if it is unset or empty."""
    value = os.environ.get(env_var_name, "").strip()
    return int(value) if value else default


def is_trace_logging_enabled():
    if STACKDEPLOY_LOG:
        log_level = str(STACKDEPLOY_LOG).upper()
        return log_level.lower() in TRACE_LOG_LEVELS
    return False


# log level of the stackdeploy loggers
STACKDEPLOY_LOG = eval_log_type("STACKDEPLOY_LOG")
DEBUG = is_env_true("DEBUG") or STACKDEPLOY_LOG in TRACE_LOG_LEVELS

# custom endpoint for all AWS clients, e.g., to deploy against a local emulator
AWS_ENDPOINT_URL = os.environ.get("AWS_ENDPOINT_URL", "").strip() or None

# templates larger than this (in bytes) are uploaded to the artifact bucket and passed by URL
TEMPLATE_INLINE_SIZE_LIMIT = env_int(
    "STACKDEPLOY_TEMPLATE_INLINE_SIZE_LIMIT", DEFAULT_TEMPLATE_INLINE_SIZE_LIMIT
)

# bucket and key prefix for uploaded (oversized or nested) templates
ARTIFACT_BUCKET = os.environ.get("STACKDEPLOY_ARTIFACT_BUCKET", "").strip()
ARTIFACT_PREFIX = (
    os.environ.get("STACKDEPLOY_ARTIFACT_PREFIX", "").strip().strip("/") or DEFAULT_ARTIFACT_PREFIX
)

# polling cadence and bounds (in seconds) for change sets
CHANGE_SET_POLL_INTERVAL = env_float("STACKDEPLOY_CHANGE_SET_POLL_INTERVAL", 3)
CHANGE_SET_MAX_WAIT = env_float("STACKDEPLOY_CHANGE_SET_MAX_WAIT", 600)

# polling cadence and bounds (in seconds) for stack operations
STACK_POLL_INTERVAL = env_float("STACKDEPLOY_STACK_POLL_INTERVAL", 5)
STACK_MAX_WAIT = env_float("STACKDEPLOY_STACK_MAX_WAIT", 3600)

# polling cadence (in seconds) for stack events, independent of the stack status polling
EVENT_POLL_INTERVAL = env_float("STACKDEPLOY_EVENT_POLL_INTERVAL", 2)

# retries for transient provider errors (throttling, connection errors)
PROVIDER_MAX_RETRIES = env_int("STACKDEPLOY_PROVIDER_MAX_RETRIES", 5)
PROVIDER_RETRY_INTERVAL = env_float("STACKDEPLOY_PROVIDER_RETRY_INTERVAL", 1)

# what to do when a deployment for a stack is requested while another one is running
CONCURRENT_DEPLOY_MODE = (
    os.environ.get("STACKDEPLOY_CONCURRENT_DEPLOY_MODE", "").strip().lower()
    or CONCURRENT_DEPLOY_WAIT
)
if CONCURRENT_DEPLOY_MODE not in (CONCURRENT_DEPLOY_WAIT, CONCURRENT_DEPLOY_REJECT):
    raise ValueError(
        "STACKDEPLOY_CONCURRENT_DEPLOY_MODE must be one of %s, got %s"
        % ((CONCURRENT_DEPLOY_WAIT, CONCURRENT_DEPLOY_REJECT), CONCURRENT_DEPLOY_MODE)
    )

# set log levels immediately, but will be overwritten later by setup_logging
if DEBUG:
    logging.getLogger("").setLevel(logging.DEBUG)
    logging.getLogger("stackdeploy").setLevel(logging.DEBUG)
