# Standard Library
import logging
import os
import sys

# Local
from connector_cdk.protocol import AirbyteLog, AirbyteLogLevel
from connector_cdk.utils import REDACTED

TRACE = 5
logging.addLevelName(TRACE, 'TRACE')

LEVELS = {
    AirbyteLogLevel.FATAL: logging.CRITICAL,
    AirbyteLogLevel.ERROR: logging.ERROR,
    AirbyteLogLevel.WARN: logging.WARNING,
    AirbyteLogLevel.INFO: logging.INFO,
    AirbyteLogLevel.DEBUG: logging.DEBUG,
    AirbyteLogLevel.TRACE: TRACE,
}

def to_airbyte_level(levelno):
    if levelno >= logging.CRITICAL:
        return AirbyteLogLevel.FATAL
    if levelno >= logging.ERROR:
        return AirbyteLogLevel.ERROR
    if levelno >= logging.WARNING:
        return AirbyteLogLevel.WARN
    if levelno >= logging.INFO:
        return AirbyteLogLevel.INFO
    if levelno >= logging.DEBUG:
        return AirbyteLogLevel.DEBUG
    return AirbyteLogLevel.TRACE

def to_logging_level(level):
    level = (level or AirbyteLogLevel.INFO).upper()
    if level == 'WARNING':
        level = AirbyteLogLevel.WARN
    if level == 'CRITICAL':
        level = AirbyteLogLevel.FATAL
    if level not in LEVELS:
        raise ValueError('Unknown log level: {}'.format(level))
    return LEVELS[level]


class AirbyteLogHandler(logging.Handler):
    """Turns log records into LOG protocol messages written through an AirbyteLogger."""

    def __init__(self, airbyte_logger):
        super().__init__()
        self.airbyte_logger = airbyte_logger
        self.setFormatter(logging.Formatter('%(message)s'))

    def emit(self, record):
        try:
            stack_trace = None
            if record.exc_info:
                stack_trace = self.airbyte_logger.mask(
                    self.formatter.formatException(record.exc_info))
            message = self.airbyte_logger.mask(record.getMessage())
            self.airbyte_logger.write(
                AirbyteLog.make(to_airbyte_level(record.levelno), message, stack_trace))
        except Exception: # pylint: disable=broad-except
            self.handleError(record)


class AirbyteLogger(object):
    '''
    The single output sink of a connector. Protocol messages are written as one JSON document
    per line, and log lines are wrapped into LOG messages on the same stream so the platform
    reading stdout sees everything in order.

    The level threshold comes from the LOG_LEVEL environment variable unless given explicitly.
    '''

    def __init__(self, level=None, out=None, name='airbyte'):
        self.out = out
        self.secrets = []
        self.handler = AirbyteLogHandler(self)
        self._logger = logging.Logger(name, level=to_logging_level(level or os.environ.get('LOG_LEVEL')))
        self._logger.addHandler(self.handler)

    @property
    def level(self):
        return to_airbyte_level(self._logger.level)

    def set_level(self, level):
        self._logger.setLevel(to_logging_level(level))

    def capture(self, name=None):
        '''
        Route another logger (the root logger by default) through this sink, so output from
        libraries such as backoff or the connector's HTTP client ends up as LOG messages.
        A named logger stops propagating, so its records are not also written by the root
        logger's handlers.
        '''
        logger = logging.getLogger(name)
        if self.handler not in logger.handlers:
            logger.addHandler(self.handler)
        logger.setLevel(self._logger.level)
        if name:
            logger.propagate = False
        return logger

    def add_secret(self, value):
        if value and value not in self.secrets:
            self.secrets.append(value)

    def mask(self, text):
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return text

    def trace(self, msg, *args, **kwargs):
        self._logger.log(TRACE, msg, *args, **kwargs)

    def debug(self, msg, *args, **kwargs):
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg, *args, **kwargs):
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg, *args, **kwargs):
        self._logger.warning(msg, *args, **kwargs)

    warn = warning

    def error(self, msg, *args, **kwargs):
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg, *args, **kwargs):
        self._logger.critical(msg, *args, **kwargs)

    fatal = critical

    def write(self, message):
        out = self.out if self.out is not None else sys.stdout
        out.write(message.to_json() + '\n')
        out.flush()
