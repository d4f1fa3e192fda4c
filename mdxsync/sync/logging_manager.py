"""
Structured logging for the sync engine.

Every component logs through the ``mdxsync`` logger hierarchy. The
LoggingManager attaches a JSON formatter so that webhook deliveries, sync
runs and per-file outcomes can be traced by grepping a single stream.

Structured context is passed with ``extra={'details': {...}}`` and ends up
under the ``details`` key of the emitted record.
"""

import json
import logging
import sys
from typing import Optional

ROOT_LOGGER_NAME = "mdxsync"


class JsonFormatter(logging.Formatter):
    """
    Render log records as one JSON object per line.
    """
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record['exc_info'] = self.formatException(record.exc_info)
        if hasattr(record, 'details'):
            log_record['details'] = record.details
        return json.dumps(log_record, default=str, ensure_ascii=False)


class LoggingManager:
    """
    Owns the handler setup of the ``mdxsync`` logger.

    A single instance exists per process. Constructing it again with a
    different level or log file reconfigures the existing handlers instead
    of stacking new ones.
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        if not cls._instance:
            cls._instance = super(LoggingManager, cls).__new__(cls)
        return cls._instance

    def __init__(self, log_level: str = "INFO", log_file: Optional[str] = None):
        if getattr(self, '_initialized', False) and \
                (log_level.upper(), log_file) == (self.log_level, self.log_file):
            return
        self.configure(log_level, log_file)
        self._initialized = True

    def configure(self, log_level: str, log_file: Optional[str] = None):
        self.log_level = log_level.upper()
        self.log_file = log_file
        self.logger = logging.getLogger(ROOT_LOGGER_NAME)
        self.logger.setLevel(self.log_level)
        self.logger.propagate = False

        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(JsonFormatter())
        self.logger.addHandler(console_handler)

        if self.log_file:
            file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
            file_handler.setLevel(self.log_level)
            file_handler.setFormatter(JsonFormatter())
            self.logger.addHandler(file_handler)

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """
        Return a logger under the ``mdxsync`` hierarchy, configuring
        defaults on first use.
        """
        if not LoggingManager._instance:
            LoggingManager()
        return logging.getLogger(name)


def get_logger(name: str) -> logging.Logger:
    return LoggingManager.get_logger(name)
