import logging
import xml.etree.ElementTree as ET
from typing import Optional

import requests
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class MediaServicesError(Exception):
    """Raised for failures reported by the media service.

    Carries the service error code and HTTP status when the service sent them.
    """

    def __init__(
            self,
            message: str,
            code: str | None = None,
            status_code: int | None = None
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


class JobFailedError(MediaServicesError):
    """Raised when a transcoding job ends in the ERROR or CANCELED state."""

    def __init__(self, job_id: str, state: str, message: str | None = None):
        text = f"Job {job_id} ended in state {state}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text, code=state)
        self.job_id = job_id
        self.state = state


class LocatorNotFoundError(MediaServicesError):
    pass


def _local_name(tag: str) -> str:
    return tag.rsplit('}', 1)[-1]


def _parse_xml_error(body: str) -> Optional[tuple[str | None, str | None]]:
    """Return (code, message) from an XML error document, or None if the body isn't one."""
    try:
        root = ET.fromstring(body)
    except ET.ParseError:
        return None

    # S3 returns <Error>, some services wrap it as <ErrorResponse><Error>
    error = root if _local_name(root.tag) == 'Error' else None
    if error is None:
        error = next((el for el in root.iter() if _local_name(el.tag) == 'Error'), None)
    if error is None:
        return None

    fields = {_local_name(child.tag): (child.text or '').strip() for child in error}
    return fields.get('Code') or None, fields.get('Message') or None


def _format(code: str | None, message: str | None, fallback: str) -> str:
    if code and message:
        return f"{code}: {message}"
    return message or code or fallback


def parse_service_error(exc: Exception) -> Exception:
    """Turn a service error into a MediaServicesError carrying the service's own message.

    Exceptions that did not come from the service are returned unchanged.
    """
    if isinstance(exc, MediaServicesError):
        return exc

    if isinstance(exc, ClientError):
        error = exc.response.get('Error', {})
        status = exc.response.get('ResponseMetadata', {}).get('HTTPStatusCode')
        code = error.get('Code')
        parsed = MediaServicesError(_format(code, error.get('Message'), str(exc)), code=code, status_code=status)
        parsed.__cause__ = exc
        return parsed

    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        fields = _parse_xml_error(exc.response.text or '')
        if fields is None:
            logger.debug("HTTP error body is not an XML error document")
            return exc
        code, message = fields
        parsed = MediaServicesError(_format(code, message, str(exc)), code=code,
                                    status_code=exc.response.status_code)
        parsed.__cause__ = exc
        return parsed

    return exc
