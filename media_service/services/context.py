import logging
from typing import Optional

import boto3
from botocore.client import BaseClient

from media_service.core.config import Settings, get_settings
from media_service.services.assets import AssetCollection
from media_service.services.jobs import JobCollection
from media_service.services.locators import LocatorCollection

logger = logging.getLogger(__name__)


class MediaServicesCredentials:
    """Account name and key used to sign every call made through a context."""

    def __init__(self, account_name: str, account_key: str):
        if not account_name or not account_key:
            raise ValueError("Both the account name and the account key are required")
        self.account_name = account_name
        self.account_key = account_key

    def __repr__(self) -> str:
        # Never print the key
        return f"MediaServicesCredentials(account_name={self.account_name!r})"


class CloudMediaContext:
    """Entry point to the media service: storage, encoding and access collections.

    Clients can be passed in directly, otherwise they are created from the credentials.
    """

    def __init__(
            self,
            credentials: MediaServicesCredentials,
            settings: Optional[Settings] = None,
            s3_client: Optional[BaseClient] = None,
            mediaconvert_client: Optional[BaseClient] = None,
    ):
        self.credentials = credentials
        self.settings = settings or get_settings()
        self.bucket = self.settings.S3_ASSETS_BUCKET
        self.region_name = self.settings.REGION_NAME

        logger.debug("Initializing CloudMediaContext for bucket %s in %s", self.bucket, self.region_name)
        self.s3_client: BaseClient = s3_client or self._client('s3')
        self.mediaconvert_client: BaseClient = mediaconvert_client or self._create_mediaconvert_client()

        self.assets = AssetCollection(self)
        self.jobs = JobCollection(self)
        self.locators = LocatorCollection(self)

    def _client(self, service_name: str, endpoint_url: Optional[str] = None) -> BaseClient:
        return boto3.client(
            service_name,
            region_name=self.region_name,
            endpoint_url=endpoint_url,
            aws_access_key_id=self.credentials.account_name,
            aws_secret_access_key=self.credentials.account_key,
        )

    def _create_mediaconvert_client(self) -> BaseClient:
        endpoint_url = self.settings.MEDIACONVERT_ENDPOINT
        if not endpoint_url:
            # MediaConvert calls have to go to the account-specific endpoint
            endpoints = self._client('mediaconvert').describe_endpoints()
            endpoint_url = endpoints['Endpoints'][0]['Url']
            logger.info("Discovered MediaConvert endpoint %s", endpoint_url)
        return self._client('mediaconvert', endpoint_url=endpoint_url)
