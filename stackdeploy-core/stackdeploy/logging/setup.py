import logging
import sys
import warnings

from stackdeploy import config

from .format import AddFormattedAttributes, DefaultFormatter

# log levels of third-party and internal loggers, applied on top of the root log level

default_log_levels = {
    "boto3": logging.INFO,
    "botocore": logging.ERROR,
    "s3transfer": logging.INFO,
    "urllib3": logging.WARNING,
    "stackdeploy.deploy.provider": logging.INFO,
}

trace_log_levels = {
    "botocore": logging.DEBUG,
    "stackdeploy.deploy.provider": logging.DEBUG,
}


def setup_logging_for_cli(log_level=logging.INFO):
    logging.basicConfig(level=log_level)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("stackdeploy").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)


def get_log_level_from_config():
    # overriding the log level if STACKDEPLOY_LOG has been set
    if config.STACKDEPLOY_LOG:
        log_level = str(config.STACKDEPLOY_LOG).upper()
        if config.is_trace_logging_enabled():
            log_level = "DEBUG"
        if log_level == "WARN":
            log_level = "WARNING"
        return logging.getLevelName(log_level)

    return logging.DEBUG if config.DEBUG else logging.INFO


def setup_logging_from_config():
    log_level = get_log_level_from_config()
    setup_logging(log_level)

    if config.is_trace_logging_enabled():
        for name, level in trace_log_levels.items():
            logging.getLogger(name).setLevel(level)


def create_default_handler(log_level: int):
    log_handler = logging.StreamHandler(stream=sys.stderr)
    log_handler.setLevel(log_level)
    log_handler.setFormatter(DefaultFormatter())
    log_handler.addFilter(AddFormattedAttributes())
    return log_handler


def setup_logging(log_level=logging.INFO) -> None:
    """
    Configures the python logging environment for stackdeploy.

    :param log_level: the optional log level.
    """
    # set create a default handler for the root logger (basically logging.basicConfig but explicit)
    log_handler = create_default_handler(log_level)

    # replace any existing handlers
    logging.basicConfig(level=log_level, handlers=[log_handler], force=True)

    # disable some logs and warnings
    warnings.filterwarnings("ignore")
    logging.captureWarnings(True)

    # set log levels of loggers
    logging.root.setLevel(log_level)
    logging.getLogger("stackdeploy").setLevel(log_level)
    for logger, level in default_log_levels.items():
        logging.getLogger(logger).setLevel(level)
