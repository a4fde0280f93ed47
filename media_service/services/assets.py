import logging
import mimetypes
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from media_service.core.errors import MediaServicesError

logger = logging.getLogger(__name__)

ASSETS_PREFIX = 'assets'
ASSET_ID_PREFIX = 'nb:cid:UUID:'
DOWNLOAD_CHUNK_SIZE = 1024 * 1024
DOWNLOAD_TIMEOUT = 60


class AssetCreationOptions(Enum):
    NONE = 'None'
    STORAGE_ENCRYPTED = 'StorageEncrypted'


@dataclass
class TransferProgress:
    bytes_transferred: int
    total_bytes: int

    @property
    def progress(self) -> float:
        if self.total_bytes <= 0:
            return 100.0
        return min(100.0, self.bytes_transferred * 100.0 / self.total_bytes)


UploadProgress = TransferProgress
DownloadProgress = TransferProgress


@dataclass
class AssetFile:
    name: str
    key: str
    size: int = 0
    asset: Optional['Asset'] = field(default=None, repr=False, compare=False)

    def get_sas_uri(self) -> str:
        return self.asset.context.locators.get_sas_uri(self)


class _ProgressTracker:
    """boto3 transfer callback that turns byte counts into percentages.

    s3transfer may call it from several worker threads.
    """

    def __init__(self, asset_file: AssetFile, total_bytes: int, callback: Optional[Callable]):
        self._asset_file = asset_file
        self._total_bytes = total_bytes
        self._callback = callback
        self._seen = 0
        self._lock = threading.Lock()

    def __call__(self, bytes_amount: int) -> None:
        with self._lock:
            self._seen += bytes_amount
            if self._callback:
                self._callback(self._asset_file, UploadProgress(self._seen, self._total_bytes))


class Asset:
    def __init__(
            self,
            context: Any,
            asset_id: str,
            name: str,
            options: AssetCreationOptions = AssetCreationOptions.NONE,
            manifest_name: Optional[str] = None,
    ):
        self.context = context
        self.id = asset_id
        self.name = name
        self.options = options
        # Base name of the streaming manifest, set on encoder output assets
        self.manifest_name = manifest_name
        self.primary_file: Optional[AssetFile] = None

    def __repr__(self) -> str:
        return f"Asset(id={self.id!r}, name={self.name!r})"

    @property
    def uuid(self) -> str:
        return self.id[len(ASSET_ID_PREFIX):] if self.id.startswith(ASSET_ID_PREFIX) else self.id

    @property
    def prefix(self) -> str:
        return f"{ASSETS_PREFIX}/{self.uuid}"

    @property
    def storage_uri(self) -> str:
        return f"s3://{self.context.bucket}/{self.prefix}/"

    def asset_files(self) -> list[AssetFile]:
        files = []
        paginator = self.context.s3_client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.context.bucket, Prefix=f"{self.prefix}/"):
            for obj in page.get('Contents', []):
                name = obj['Key'][len(self.prefix) + 1:]
                if name:
                    files.append(AssetFile(name=name, key=obj['Key'], size=obj.get('Size', 0), asset=self))
        return files

    def get_smooth_streaming_uri(self) -> str:
        return self.context.locators.get_smooth_streaming_uri(self)

    def get_hls_uri(self) -> str:
        return self.context.locators.get_hls_uri(self)

    def get_mpeg_dash_uri(self) -> str:
        return self.context.locators.get_mpeg_dash_uri(self)

    def download_to_folder(
            self,
            folder: str | Path,
            progress_callback: Optional[Callable[[AssetFile, DownloadProgress], None]] = None,
    ) -> list[Path]:
        """Download every file of the asset into `folder` through its signed-access locator.

        The folder is created when missing. Returns the local paths written.
        """
        folder = Path(folder)
        folder.mkdir(parents=True, exist_ok=True)
        root = folder.resolve()

        written = []
        for asset_file in self.asset_files():
            target = (folder / asset_file.name).resolve()
            if not target.is_relative_to(root):
                raise MediaServicesError(f"Asset file {asset_file.key} resolves outside {folder}")
            target.parent.mkdir(parents=True, exist_ok=True)
            uri = asset_file.get_sas_uri()
            logger.debug("Downloading %s -> %s", asset_file.key, target)

            with requests.get(uri, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                if response.status_code >= 400:
                    # Read the error document now, the stream is closed when the block exits
                    body = response.content
                    logger.error("Download of %s failed (status=%s): %s", asset_file.key,
                                 response.status_code, body[:500])
                response.raise_for_status()
                total = int(response.headers.get('Content-Length') or asset_file.size or 0)
                done = 0
                with open(target, 'wb') as fh:
                    for chunk in response.iter_content(chunk_size=DOWNLOAD_CHUNK_SIZE):
                        if not chunk:
                            continue
                        fh.write(chunk)
                        done += len(chunk)
                        if progress_callback:
                            progress_callback(asset_file, DownloadProgress(done, total))
                if progress_callback and done == 0:
                    progress_callback(asset_file, DownloadProgress(0, 0))
            written.append(target)

        logger.info("Downloaded %d file(s) of asset %s to %s", len(written), self.id, folder)
        return written


class AssetCollection:
    def __init__(self, context: Any):
        self.context = context

    def create_empty(self, name: str, options: AssetCreationOptions = AssetCreationOptions.NONE) -> Asset:
        # S3 has no directories, so an empty asset is just a fresh prefix
        asset_id = f"{ASSET_ID_PREFIX}{uuid.uuid4()}"
        return Asset(self.context, asset_id, name, options)

    def get(self, asset_id: str) -> Asset:
        asset = Asset(self.context, asset_id, name=asset_id)
        files = asset.asset_files()
        if not files:
            raise MediaServicesError(f"Asset {asset_id} was not found", code='ResourceNotFound', status_code=404)
        asset.name = files[0].name
        return asset

    def create_from_file(
            self,
            file_name: str | Path,
            options: AssetCreationOptions = AssetCreationOptions.NONE,
            progress_callback: Optional[Callable[[AssetFile, UploadProgress], None]] = None,
    ) -> Asset:
        """Create a new asset and upload `file_name` into it."""
        path = Path(file_name)
        if not path.is_file():
            raise FileNotFoundError(f"Source file not found: {path}")

        asset = self.create_empty(path.name, options)
        key = f"{asset.prefix}/{path.name}"
        total = path.stat().st_size
        asset_file = AssetFile(name=path.name, key=key, size=total, asset=asset)
        asset.primary_file = asset_file

        extra_args = {}
        content_type, _ = mimetypes.guess_type(path.name)
        if content_type:
            extra_args['ContentType'] = content_type
        if options is AssetCreationOptions.STORAGE_ENCRYPTED:
            extra_args['ServerSideEncryption'] = 'AES256'

        logger.info("Uploading %s to %s (%d bytes)", path, asset.storage_uri, total)
        try:
            self.context.s3_client.upload_file(
                str(path),
                self.context.bucket,
                key,
                ExtraArgs=extra_args,
                Callback=_ProgressTracker(asset_file, total, progress_callback),
            )
        except Exception as e:
            logger.error("Upload of %s failed: %s", path, e)
            raise

        if progress_callback and total == 0:
            progress_callback(asset_file, UploadProgress(0, 0))
        return asset
