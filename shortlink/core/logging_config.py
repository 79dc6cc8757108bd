import logging
import sys

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(funcName)s:%(lineno)d | %(message)s'

# Visits the access log sink could not ship are written here instead
ACCESS_LOG_FALLBACK = "shortlink.access_log"

# Chatty third-party loggers, kept at WARNING
QUIET_LOGGERS = ("sqlalchemy.engine", "redis", "urllib3")


def configure_logging(level: str = "INFO") -> logging.Logger:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    logging.getLogger("uvicorn.error").propagate = True
    logging.getLogger("uvicorn.access").disabled = True

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    # Never filtered out, whatever LOG_LEVEL says
    logging.getLogger(ACCESS_LOG_FALLBACK).setLevel(logging.INFO)

    return logging.getLogger("shortlink")
