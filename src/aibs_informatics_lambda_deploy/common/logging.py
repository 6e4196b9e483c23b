"""Structured logging for deployment components.

Every component logs through an AWS Lambda Powertools `Logger` under the
``lambda-deploy`` service, so CLI messages, build output and per-region
reconcile lines share one JSON format.
"""

import logging
from typing import Optional, Sequence, Union

from aibs_informatics_core.utils.logging import get_all_handlers
from aws_lambda_powertools.logging import Logger

SERVICE_NAME = "lambda-deploy"

LIBRARY_LOGGERS = ("boto3", "botocore", "urllib3")


class LoggingMixins:
    """Gives a component a lazily created, replaceable `logger`."""

    @classmethod
    def service_name(cls) -> str:
        return f"{SERVICE_NAME}.{cls.__name__}"

    @property
    def logger(self) -> Logger:
        try:
            return self._logger
        except AttributeError:
            self._logger = self.get_logger()
        return self._logger

    @logger.setter
    def logger(self, value: Logger):
        self._logger = value

    @classmethod
    def get_logger(cls, service: Optional[str] = None) -> Logger:
        return get_service_logger(service or cls.service_name())


def get_service_logger(service: Optional[str] = None, child: bool = False) -> Logger:
    """Create a Powertools logger for a deployment component.

    Args:
        service (Optional[str]): Logger service name. Defaults to ``lambda-deploy``.
        child (bool): Whether to create a child of an existing service logger.

    Returns:
        A configured Logger instance.
    """
    return Logger(service=service or SERVICE_NAME, child=child)


def add_handler_to_logger(
    source_logger: Logger, target_logger: Union[str, logging.Logger, None] = None
):
    """Attach the handler of a Powertools logger to a standard library logger.

    Args:
        source_logger (Logger): The logger whose handler is shared.
        target_logger (Union[str, logging.Logger, None]): Logger name, logger instance,
            or None for the root logger.
    """
    handler = source_logger.registered_handler

    if target_logger is None or isinstance(target_logger, str):
        target_logger = logging.getLogger(target_logger)
    if handler not in get_all_handlers(target_logger):
        target_logger.addHandler(handler)


def enable_library_logging(
    source_logger: Logger,
    level: int = logging.DEBUG,
    names: Sequence[str] = LIBRARY_LOGGERS,
):
    """Route records of the AWS SDK loggers through ``source_logger``'s handler."""
    for name in names:
        library_logger = logging.getLogger(name)
        library_logger.setLevel(level)
        add_handler_to_logger(source_logger, library_logger)
