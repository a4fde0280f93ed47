import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Callable, Optional

from media_service.core.errors import JobFailedError, MediaServicesError
from media_service.services.assets import Asset, AssetCreationOptions

logger = logging.getLogger(__name__)


class JobState(Enum):
    QUEUED = 'Queued'
    SCHEDULED = 'Scheduled'
    PROCESSING = 'Processing'
    FINISHED = 'Finished'
    ERROR = 'Error'
    CANCELED = 'Canceled'
    CANCELING = 'Canceling'

    @classmethod
    def from_status(cls, status: str) -> 'JobState':
        try:
            return _MEDIACONVERT_STATES[status]
        except KeyError:
            raise MediaServicesError(f"Unknown job status: {status}") from None


_MEDIACONVERT_STATES = {
    'SUBMITTED': JobState.QUEUED,
    'PROGRESSING': JobState.PROCESSING,
    'COMPLETE': JobState.FINISHED,
    'ERROR': JobState.ERROR,
    'CANCELED': JobState.CANCELED,
}

TERMINAL_STATES = (JobState.FINISHED, JobState.ERROR, JobState.CANCELED)


@dataclass(frozen=True)
class Rendition:
    name_modifier: str
    width: int
    height: int
    bitrate: int


# Encoder names resolve to the MediaConvert queue their jobs are sent to
MEDIA_PROCESSORS = {
    'Media Encoder Standard': 'Default',
}

BITRATE_PRESETS = {
    'H264 Multiple Bitrate 720p': (
        Rendition('_1280x720_3400', 1280, 720, 3_400_000),
        Rendition('_960x540_2250', 960, 540, 2_250_000),
        Rendition('_960x540_1500', 960, 540, 1_500_000),
        Rendition('_640x360_1000', 640, 360, 1_000_000),
        Rendition('_640x360_650', 640, 360, 650_000),
        Rendition('_320x180_400', 320, 180, 400_000),
    ),
    'H264 Multiple Bitrate 1080p': (
        Rendition('_1920x1080_6750', 1920, 1080, 6_750_000),
        Rendition('_1280x720_4700', 1280, 720, 4_700_000),
        Rendition('_1280x720_3400', 1280, 720, 3_400_000),
        Rendition('_960x540_2250', 960, 540, 2_250_000),
        Rendition('_960x540_1500', 960, 540, 1_500_000),
        Rendition('_640x360_1000', 640, 360, 1_000_000),
        Rendition('_640x360_650', 640, 360, 650_000),
        Rendition('_320x180_400', 320, 180, 400_000),
    ),
}

AUDIO_BITRATE = 128_000
# Upper bound on how long a stop or cancel request waits to be noticed
WAKE_INTERVAL = 0.5


def _mp4_output(rendition: Rendition) -> dict:
    return {
        "ContainerSettings": {
            "Container": "MP4",
            "Mp4Settings": {},
        },
        "VideoDescription": {
            "Width": rendition.width,
            "Height": rendition.height,
            "CodecSettings": {
                "Codec": "H_264",
                "H264Settings": {
                    "RateControlMode": "CBR",
                    "Bitrate": rendition.bitrate,
                    "GopSize": 2,
                    "GopSizeUnits": "SECONDS",
                },
            },
        },
        "AudioDescriptions": [
            {
                "CodecSettings": {
                    "Codec": "AAC",
                    "AacSettings": {
                        "Bitrate": AUDIO_BITRATE,
                        "CodingMode": "CODING_MODE_2_0",
                        "SampleRate": 48000,
                    },
                },
            }
        ],
        "NameModifier": rendition.name_modifier,
    }


class Job:
    """A transcoding job with a single task.

    Created locally by JobCollection.create_with_single_task, sent to MediaConvert by submit().
    """

    def __init__(
            self,
            context: Any,
            name: str,
            processor_name: str,
            preset_name: str,
            input_asset: Asset,
            output_asset: Asset,
    ):
        self.context = context
        self.name = name
        self.processor_name = processor_name
        self.preset_name = preset_name
        self.input_asset = input_asset
        self._output_asset = output_asset
        self.id: Optional[str] = None
        self.state: Optional[JobState] = None
        self.error_message: Optional[str] = None
        self.output_media_assets: list[Asset] = []
        self._progress = 0.0

    def __repr__(self) -> str:
        return f"Job(id={self.id!r}, name={self.name!r}, state={self.state})"

    def _input_file_uri(self) -> str:
        primary = self.input_asset.primary_file
        if primary is None:
            files = self.input_asset.asset_files()
            if not files:
                raise MediaServicesError(f"Input asset {self.input_asset.id} has no files")
            primary = files[0]
        return f"s3://{self.context.bucket}/{primary.key}"

    def build_settings(self) -> dict:
        input_uri = self._input_file_uri()
        job_settings = {
            "Role": self.context.settings.MEDIACONVERT_ROLE_ARN,
            "Queue": MEDIA_PROCESSORS[self.processor_name],
            "StatusUpdateInterval": "SECONDS_10",
            "UserMetadata": {
                "JobName": self.name,
                "Encoder": self.processor_name,
                "Preset": self.preset_name,
                "InputAssetId": self.input_asset.id,
                "OutputAssetId": self._output_asset.id,
            },
            "Settings": {
                "TimecodeConfig": {"Source": "ZEROBASED"},
                "Inputs": [
                    {
                        "FileInput": input_uri,
                        "AudioSelectors": {
                            "Audio Selector 1": {"DefaultSelection": "DEFAULT"},
                        },
                        "VideoSelector": {},
                        "TimecodeSource": "ZEROBASED",
                    }
                ],
                "OutputGroups": [
                    {
                        "Name": self._output_asset.name,
                        "OutputGroupSettings": {
                            "Type": "FILE_GROUP_SETTINGS",
                            "FileGroupSettings": {
                                # Trailing slash: outputs are named after the input file
                                "Destination": self._output_asset.storage_uri,
                            },
                        },
                        "Outputs": [_mp4_output(r) for r in BITRATE_PRESETS[self.preset_name]],
                    }
                ],
            },
        }
        if self._output_asset.options is AssetCreationOptions.STORAGE_ENCRYPTED:
            destination = job_settings["Settings"]["OutputGroups"][0]["OutputGroupSettings"]["FileGroupSettings"]
            destination["DestinationSettings"] = {
                "S3Settings": {"Encryption": {"EncryptionType": "SERVER_SIDE_ENCRYPTION_S3"}},
            }
        return job_settings

    def submit(self) -> None:
        if self.id is not None:
            raise MediaServicesError(f"Job {self.id} has already been submitted")

        logger.info("Submitting job %r (%s, %s)", self.name, self.processor_name, self.preset_name)
        try:
            response = self.context.mediaconvert_client.create_job(**self.build_settings())
        except Exception as e:
            logger.error("Job submission failed: %s", e)
            raise
        self.id = response['Job']['Id']
        self._update(response['Job'])
        logger.info("Job %s submitted", self.id)

    def refresh(self) -> None:
        if self.id is None:
            raise MediaServicesError("Job has not been submitted")
        response = self.context.mediaconvert_client.get_job(Id=self.id)
        self._update(response['Job'])

    def _update(self, job: dict) -> None:
        self.state = JobState.from_status(job['Status'])
        self._progress = float(job.get('JobPercentComplete') or 0)
        self.error_message = job.get('ErrorMessage')
        if self.state is JobState.FINISHED and not self.output_media_assets:
            self.output_media_assets = [self._output_asset]

    def get_overall_progress(self) -> float:
        if self.state is JobState.FINISHED:
            return 100.0
        return self._progress

    def cancel(self) -> None:
        if self.id is None:
            raise MediaServicesError("Job has not been submitted")
        logger.info("Canceling job %s", self.id)
        self.context.mediaconvert_client.cancel_job(Id=self.id)
        self.state = JobState.CANCELING

    def _wait_for_completion(
            self,
            callback: Optional[Callable[['Job'], None]],
            cancel_event: threading.Event,
            stop_event: threading.Event,
            interval: float,
    ) -> 'Job':
        last = None
        while True:
            if cancel_event.is_set():
                self.cancel()
                raise JobFailedError(self.id, JobState.CANCELED.value, "cancellation requested")
            if stop_event.is_set():
                # The caller gave up waiting, the remote job keeps running
                raise MediaServicesError(f"Stopped waiting for job {self.id}")

            self.refresh()
            snapshot = (self.state, self.get_overall_progress())
            if snapshot != last:
                last = snapshot
                if callback:
                    callback(self)

            if self.state is JobState.FINISHED:
                return self
            if self.state in (JobState.ERROR, JobState.CANCELED):
                raise JobFailedError(self.id, self.state.value, self.error_message)

            deadline = time.monotonic() + interval
            while not (cancel_event.is_set() or stop_event.is_set()):
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                stop_event.wait(min(remaining, WAKE_INTERVAL))

    def start_execution_progress_task(
            self,
            callback: Optional[Callable[['Job'], None]] = None,
            cancel_event: Optional[threading.Event] = None,
            stop_event: Optional[threading.Event] = None,
    ) -> Future:
        """Poll the job until it ends and return a future resolving to the finished job.

        `callback` runs on the polling thread whenever state or progress changes.
        The future raises JobFailedError if the job errors or is canceled.
        Setting `cancel_event` cancels the remote job; setting `stop_event` only
        ends the polling thread and fails the future with MediaServicesError.
        """
        if self.id is None:
            raise MediaServicesError("Job has not been submitted")

        interval = self.context.settings.JOB_POLL_INTERVAL
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='job-progress')
        future = executor.submit(self._wait_for_completion, callback, cancel_event or threading.Event(),
                                 stop_event or threading.Event(), interval)
        executor.shutdown(wait=False)
        return future


class JobCollection:
    def __init__(self, context: Any):
        self.context = context

    def create_with_single_task(
            self,
            processor_name: str,
            preset_name: str,
            input_asset: Asset,
            output_asset_name: str,
            options: AssetCreationOptions = AssetCreationOptions.NONE,
    ) -> Job:
        if processor_name not in MEDIA_PROCESSORS:
            raise ValueError(f"Unknown media processor: {processor_name}")
        if preset_name not in BITRATE_PRESETS:
            raise ValueError(f"Unknown encoding preset: {preset_name}")

        output_asset = self.context.assets.create_empty(output_asset_name, options)
        # MediaConvert names FILE_GROUP outputs after the input file
        output_asset.manifest_name = PurePosixPath(input_asset.name).stem
        name = f"Encoding {input_asset.name} to {output_asset_name}"
        return Job(self.context, name, processor_name, preset_name, input_asset, output_asset)
