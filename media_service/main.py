import argparse
import logging
import sys
from typing import Optional, Sequence

from media_service.core.config import get_settings
from media_service.core.errors import parse_service_error
from media_service.core.logging_config import configure_logging
from media_service.services.assets import AssetCreationOptions
from media_service.services.context import CloudMediaContext, MediaServicesCredentials
from media_service.services.workflow import (
    OUTPUT_FOLDER,
    encode_to_adaptive_bitrate_mp4,
    publish_asset_get_urls,
    upload_file,
)

logger = logging.getLogger(__name__)

SOURCE_FILE = "media/sample.mp4"


def _parse_args(argv: Optional[Sequence[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="media-service",
        description="Upload a media file, encode it to adaptive bitrate MP4, publish and download it.",
    )
    parser.add_argument("source", nargs="?", default=SOURCE_FILE, help="local file to upload")
    parser.add_argument("--no-pause", action="store_true", help="exit without waiting for Enter")
    return parser.parse_args(argv)


def _wait_for_keypress() -> None:
    try:
        input()
    except EOFError:
        pass


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parse_args(argv)

    # Centralized logging configuration
    configure_logging()
    logger.info("media-service starting")

    exit_code = 0
    try:
        settings = get_settings()
        # Only log which account is used, never the key
        logger.debug("Settings: REGION=%s, BUCKET=%s, ACCOUNT=%s", settings.REGION_NAME,
                     settings.S3_ASSETS_BUCKET, settings.MEDIA_SERVICES_ACCOUNT_NAME)

        credentials = MediaServicesCredentials(settings.MEDIA_SERVICES_ACCOUNT_NAME,
                                               settings.MEDIA_SERVICES_ACCOUNT_KEY)
        context = CloudMediaContext(credentials, settings)

        asset = upload_file(context, args.source, AssetCreationOptions.NONE)
        encoded_asset = encode_to_adaptive_bitrate_mp4(context, asset, AssetCreationOptions.NONE)
        publish_asset_get_urls(context, encoded_asset, OUTPUT_FOLDER)
        logger.info("Media processing completed successfully")
    except Exception as e:
        # Single top-level handler: report the service's own message
        error = parse_service_error(e)
        logger.error("%s", error)
        logger.debug("Failure details", exc_info=e)
        exit_code = 1
    finally:
        if not args.no_pause and sys.stdin is not None and sys.stdin.isatty():
            _wait_for_keypress()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
