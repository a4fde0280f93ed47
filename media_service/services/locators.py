import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum, Flag
from pathlib import PurePosixPath
from typing import Any, Optional

from media_service.core.errors import LocatorNotFoundError, MediaServicesError
from media_service.services.assets import Asset, AssetFile

logger = logging.getLogger(__name__)

LOCATORS_PREFIX = 'locators'
LOCATOR_ID_PREFIX = 'nb:lid:UUID:'
# SigV4 presigned URLs are rejected past seven days
MAX_PRESIGNED_LIFETIME = timedelta(days=7)

HLS_FORMAT = '(format=m3u8-aapl)'
MPEG_DASH_FORMAT = '(format=mpd-time-csf)'


class LocatorType(Enum):
    SAS = 1
    ON_DEMAND_ORIGIN = 2


class AccessPermissions(Flag):
    NONE = 0
    READ = 1
    WRITE = 2
    DELETE = 4
    LIST = 8


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Locator:
    id: str
    type: LocatorType
    asset_id: str
    permissions: AccessPermissions
    start_time: datetime
    expiration_time: datetime
    path: str

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return self.start_time <= now < self.expiration_time

    def to_dict(self) -> dict:
        return {
            'Id': self.id,
            'Type': self.type.name,
            'AssetId': self.asset_id,
            'Permissions': self.permissions.value,
            'StartTime': self.start_time.isoformat(),
            'ExpirationTime': self.expiration_time.isoformat(),
            'Path': self.path,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Locator':
        return cls(
            id=data['Id'],
            type=LocatorType[data['Type']],
            asset_id=data['AssetId'],
            permissions=AccessPermissions(data['Permissions']),
            start_time=datetime.fromisoformat(data['StartTime']),
            expiration_time=datetime.fromisoformat(data['ExpirationTime']),
            path=data['Path'],
        )


class LocatorCollection:
    """Time-bounded read grants on assets.

    Each locator is recorded as a JSON object next to the asset data so other
    processes can find it; the ones created through this context are also kept in memory.
    """

    def __init__(self, context: Any):
        self.context = context
        self._created: dict[str, list[Locator]] = {}

    def _origin_base(self) -> str:
        endpoint = self.context.settings.STREAMING_ENDPOINT
        if not endpoint:
            logger.warning("STREAMING_ENDPOINT is not set, streaming URIs will point at the bucket host "
                           "which does not serve .ism manifests")
            endpoint = f"https://{self.context.bucket}.s3.{self.context.region_name}.amazonaws.com"
        if '://' not in endpoint:
            endpoint = f"https://{endpoint}"
        return endpoint.rstrip('/')

    def _record_key(self, asset: Asset, locator_uuid: str) -> str:
        return f"{LOCATORS_PREFIX}/{asset.uuid}/{locator_uuid}.json"

    def create(
            self,
            locator_type: LocatorType,
            asset: Asset,
            permissions: AccessPermissions,
            duration: timedelta,
            start_time: Optional[datetime] = None,
    ) -> Locator:
        if duration <= timedelta(0):
            raise ValueError("Locator duration must be positive")

        start_time = start_time or _utcnow()
        locator_uuid = str(uuid.uuid4())
        if locator_type is LocatorType.ON_DEMAND_ORIGIN:
            path = f"{self._origin_base()}/{locator_uuid}/"
        else:
            path = f"https://{self.context.bucket}.s3.{self.context.region_name}.amazonaws.com/{asset.prefix}/"

        locator = Locator(
            id=f"{LOCATOR_ID_PREFIX}{locator_uuid}",
            type=locator_type,
            asset_id=asset.id,
            permissions=permissions,
            start_time=start_time,
            expiration_time=start_time + duration,
            path=path,
        )

        logger.info("Creating %s locator %s for asset %s", locator_type.name, locator.id, asset.id)
        try:
            self.context.s3_client.put_object(
                Bucket=self.context.bucket,
                Key=self._record_key(asset, locator_uuid),
                Body=json.dumps(locator.to_dict()).encode('utf-8'),
                ContentType='application/json',
            )
        except Exception as e:
            logger.error("Failed to create locator for asset %s: %s", asset.id, e)
            raise

        self._created.setdefault(asset.id, []).append(locator)
        return locator

    def for_asset(self, asset: Asset) -> list[Locator]:
        locators = []
        paginator = self.context.s3_client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.context.bucket, Prefix=f"{LOCATORS_PREFIX}/{asset.uuid}/"):
            for obj in page.get('Contents', []):
                body = self.context.s3_client.get_object(Bucket=self.context.bucket, Key=obj['Key'])['Body']
                locators.append(Locator.from_dict(json.loads(body.read())))
        return locators

    def _find(self, asset: Asset, locator_type: LocatorType) -> Locator:
        now = _utcnow()

        def usable(candidates):
            return [
                loc for loc in candidates
                if loc.type is locator_type and AccessPermissions.READ in loc.permissions and loc.is_active(now)
            ]

        matches = usable(self._created.get(asset.id, []))
        if not matches:
            matches = usable(self.for_asset(asset))
        if not matches:
            raise LocatorNotFoundError(f"Asset {asset.id} has no active {locator_type.name} read locator")
        return max(matches, key=lambda loc: loc.expiration_time)

    def _manifest_uri(self, asset: Asset) -> str:
        locator = self._find(asset, LocatorType.ON_DEMAND_ORIGIN)
        manifest = asset.manifest_name
        if not manifest:
            files = asset.asset_files()
            if not files:
                raise MediaServicesError(f"Asset {asset.id} has no files to stream")
            manifest = PurePosixPath(files[0].name).stem
        return f"{locator.path}{manifest}.ism/manifest"

    def get_smooth_streaming_uri(self, asset: Asset) -> str:
        return self._manifest_uri(asset)

    def get_hls_uri(self, asset: Asset) -> str:
        return self._manifest_uri(asset) + HLS_FORMAT

    def get_mpeg_dash_uri(self, asset: Asset) -> str:
        return self._manifest_uri(asset) + MPEG_DASH_FORMAT

    def get_sas_uri(self, asset_file: AssetFile) -> str:
        locator = self._find(asset_file.asset, LocatorType.SAS)
        remaining = min(locator.expiration_time - _utcnow(), MAX_PRESIGNED_LIFETIME)
        return self.context.s3_client.generate_presigned_url(
            ClientMethod='get_object',
            Params={'Bucket': self.context.bucket, 'Key': asset_file.key},
            ExpiresIn=max(1, int(remaining.total_seconds())),
        )
