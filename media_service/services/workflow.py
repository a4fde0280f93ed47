"""The three steps of the sample: upload, encode, publish.

Each step logs its progress and lets every error propagate to the caller.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from media_service.services.assets import Asset, AssetCreationOptions
from media_service.services.context import CloudMediaContext
from media_service.services.jobs import Job
from media_service.services.locators import AccessPermissions, Locator, LocatorType

logger = logging.getLogger(__name__)

STANDARD_ENCODER = "Media Encoder Standard"
BITRATE_PRESET = "H264 Multiple Bitrate 720p"
ADAPTIVE_BITRATE = "Adaptive Bitrate MP4"
OUTPUT_FOLDER = "Downloaded"
LOCATOR_DURATION = timedelta(days=30)


@dataclass
class PublishResult:
    locators: list[Locator]
    smooth_streaming_uri: str
    hls_uri: str
    mpeg_dash_uri: str
    progressive_download_uris: list[str]
    output_folder: Path
    downloaded_files: list[Path] = field(default_factory=list)


def upload_file(context: CloudMediaContext, file_name: str | Path,
                options: AssetCreationOptions = AssetCreationOptions.NONE) -> Asset:
    asset = context.assets.create_from_file(
        file_name,
        options,
        lambda af, p: logger.info("Uploading '%s' - progress: %.2f%%", af.name, p.progress),
    )
    logger.info("Asset %s created", asset.id)
    return asset


def _report_job(job: Job) -> None:
    logger.info("Job state: %s", job.state.value)
    logger.info("Job Progress: %.2f%%", job.get_overall_progress())


def encode_to_adaptive_bitrate_mp4(context: CloudMediaContext, asset: Asset,
                                   options: AssetCreationOptions = AssetCreationOptions.NONE) -> Asset:
    """Transcode `asset` into a multi-bitrate MP4 asset with a single-task job."""
    job = context.jobs.create_with_single_task(
        STANDARD_ENCODER,
        BITRATE_PRESET,
        asset,
        ADAPTIVE_BITRATE,
        options,
    )

    logger.info("Submitting transcoding job...")
    job.submit()

    # No cancellation: block until the job finishes or fails. If the wait is
    # interrupted the poller stops too, leaving the remote job running.
    stop = threading.Event()
    try:
        job = job.start_execution_progress_task(_report_job, stop_event=stop).result()
    finally:
        stop.set()
    logger.info("Transcoding job finished")

    return job.output_media_assets[0]


def publish_asset_get_urls(context: CloudMediaContext, asset: Asset,
                           output_folder: str | Path = OUTPUT_FOLDER) -> PublishResult:
    """Publish `asset` for streaming and progressive download, then download it locally."""
    locators = [
        context.locators.create(LocatorType.ON_DEMAND_ORIGIN, asset, AccessPermissions.READ, LOCATOR_DURATION),
        context.locators.create(LocatorType.SAS, asset, AccessPermissions.READ, LOCATOR_DURATION),
    ]

    mp4_files = [af for af in asset.asset_files() if af.name.lower().endswith('.mp4')]

    smooth_streaming_uri = asset.get_smooth_streaming_uri()
    hls_uri = asset.get_hls_uri()
    mpeg_dash_uri = asset.get_mpeg_dash_uri()
    download_uris = [af.get_sas_uri() for af in mp4_files]

    print("Urls for Adaptive streaming:")
    print(smooth_streaming_uri)
    print(hls_uri)
    print(mpeg_dash_uri)
    print()

    print("Progressive Download Urls")
    for uri in download_uris:
        print(f"{uri}\n")
    print()

    output_folder = Path(output_folder)
    if not output_folder.is_dir():
        output_folder.mkdir(parents=True)

    logger.info("Downloading output asset files to a local folder...")
    downloaded = asset.download_to_folder(
        output_folder,
        lambda af, p: logger.info("Downloading '%s' - Progress: %.2f%%", af.name, p.progress),
    )
    logger.info("Output asset files available at '%s'.", output_folder.resolve())

    return PublishResult(
        locators=locators,
        smooth_streaming_uri=smooth_streaming_uri,
        hls_uri=hls_uri,
        mpeg_dash_uri=mpeg_dash_uri,
        progressive_download_uris=download_uris,
        output_folder=output_folder,
        downloaded_files=downloaded,
    )
