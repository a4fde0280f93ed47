"""Logging setup for the media-service sample.

Upload, job and download progress are reported as INFO records, so the root
logger has to be configured before the first step runs.
"""
import logging
from typing import Optional

# SDK and transport loggers that would otherwise repeat every request
QUIET_LOGGERS = ('boto3', 'botocore', 's3transfer', 'urllib3')


def configure_logging(level: int = logging.INFO, fmt: Optional[str] = None) -> None:
    if fmt is None:
        fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    logging.basicConfig(level=level, format=fmt)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
