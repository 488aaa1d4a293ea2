import json
import logging
import logging.config
import sys

from core.config import configs

# Loggers of third-party libraries kept at WARNING in every environment.
QUIET_LIBRARIES = ("sklearn", "pyproj", "numba")


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line. Monitoring events pass their payload through
    ``extra={"context": {...}}`` and it is written under the ``context`` key.
    """

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context is not None:
            log_record["context"] = context
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def build_logging_config(formatter: dict, level: str) -> dict:
    """dictConfig payload routing root, curator and the quiet libraries to stdout."""
    handler = {
        "class": "logging.StreamHandler",
        "stream": sys.stdout,
        "formatter": "main",
    }
    loggers = {
        "root": {"level": level, "handlers": ["stdout"]},
        "curator": {"level": level, "handlers": ["stdout"], "propagate": False},
    }
    for name in QUIET_LIBRARIES:
        loggers[name] = {"level": "WARNING", "handlers": ["stdout"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"main": formatter},
        "handlers": {"stdout": handler},
        "loggers": loggers,
    }


# Readable text lines for local runs.
DEV_LOGGING_CONFIG = build_logging_config(
    {
        "format": "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
        "datefmt": "%Y-%m-%d %H:%M:%S",
    },
    configs.LOG_LEVEL,
)

# JSON lines for log aggregation.
PROD_LOGGING_CONFIG = build_logging_config(
    {"()": JsonFormatter, "datefmt": "%Y-%m-%dT%H:%M:%S%z"},
    configs.LOG_LEVEL,
)


def setup_logging():
    """
    Apply the logging configuration matching ``ENVIRONMENT`` and return it.
    """
    env = configs.ENVIRONMENT.lower()
    log_config = PROD_LOGGING_CONFIG if env == "production" else DEV_LOGGING_CONFIG

    logging.config.dictConfig(log_config)

    logging.getLogger("curator").info(f"Logging configured for {env} at level {configs.LOG_LEVEL}")
    return log_config
