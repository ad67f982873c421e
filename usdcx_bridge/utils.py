"""Bunch of random utilities."""

import datetime
import logging
import os
from pathlib import Path

import coloredlogs
import requests
from requests.adapters import HTTPAdapter
from urllib3 import Retry

logger = logging.getLogger(__name__)


def native_datetime_utc_now() -> datetime.datetime:
    """Get current UTC time as a naive datetime object.

    All timestamps in bridge records are naive UTC.
    """
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


def setup_console_logging(
    default_log_level="warning",
    simplified_logging=False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Set up coloured log output.

    - Helper function to have nicer logging output in operator scripts.
    - Tune down some noisy dependency library logging

    The level comes from ``LOG_LEVEL`` environment variable if set.

    :param log_file:
        Output both console and this log file.

    :return:
        Root logger
    """

    level = os.environ.get("LOG_LEVEL", default_log_level).upper()
    numeric_level = getattr(logging, level, None)
    assert numeric_level, f"No level: {level}"

    if simplified_logging:
        fmt = "%(message)s"
    else:
        fmt = "%(asctime)s %(name)-44s %(message)s"
    date_fmt = "%H:%M:%S"

    coloredlogs.install(level=numeric_level, fmt=fmt, datefmt=date_fmt)

    if log_file:
        assert isinstance(log_file, Path), "log_file must be a Path"
        log_file.parent.mkdir(parents=True, exist_ok=True)

        # The file always gets INFO, env var controls only terminal output
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setLevel(min(logging.INFO, numeric_level))
        file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
        root = logging.getLogger()
        root.setLevel(min(logging.INFO, numeric_level))
        root.addHandler(file_handler)

    # Mute noise
    logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
    logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("web3.manager.RequestManager").setLevel(logging.WARNING)
    logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)
    return logging.getLogger()


class LoggingRetry(Retry):
    """When Circle Iris throttles us or has a bad moment, be verbose about it.

    Connection level retries for a single attestation lookup.
    The attestation poller backoff is the outer retry loop.
    """

    def __init__(self, *args, **kwargs):
        self.logger = kwargs.pop("logger", logger)
        super().__init__(*args, **kwargs)

    def new(self, **kw):
        retry = super().new(**kw)
        retry.logger = self.logger
        return retry

    def increment(self, method=None, url=None, response=None, error=None, _pool=None, _stacktrace=None):
        if response:
            status = response.status
            reason = response.reason
        else:
            status = None
            reason = str(error)

        url_shortened = (url or "")[0:96]

        self.logger.warning("Retrying: %s %s (status: %s, reason: %s)", method, url_shortened, status, reason)
        return super().increment(method, url, response, error, _pool, _stacktrace)


def create_retrying_session(retries: int = 3, backoff_factor: float = 0.5) -> requests.Session:
    """Create a requests session that retries throttled and failed HTTP calls.

    :param retries:
        How many connection level retries for 429 and 5xx responses

    :param backoff_factor:
        urllib3 backoff factor between these retries
    """
    session = requests.Session()
    retry_policy = LoggingRetry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        # We want to see the final response and decide ourselves
        raise_on_status=False,
    )
    session.mount("http://", HTTPAdapter(max_retries=retry_policy))
    session.mount("https://", HTTPAdapter(max_retries=retry_policy))
    return session
