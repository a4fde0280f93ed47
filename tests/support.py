"""In-memory stand-ins for the S3 and MediaConvert clients used across the tests."""
import io
from pathlib import Path
from unittest.mock import MagicMock

from media_service.core.config import Settings
from media_service.services.context import CloudMediaContext, MediaServicesCredentials

BUCKET = "test-media-bucket"


class FakePaginator:
    def __init__(self, s3):
        self._s3 = s3

    def paginate(self, Bucket, Prefix=""):
        keys = sorted(k for k in self._s3.objects if k.startswith(Prefix))
        # Two pages so callers have to walk them all
        half = len(keys) // 2
        for chunk in (keys[:half], keys[half:]):
            yield {'Contents': [{'Key': k, 'Size': len(self._s3.objects[k])} for k in chunk]}


class FakeS3:
    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.uploads = []
        self.presigned = []

    def upload_file(self, Filename, Bucket, Key, ExtraArgs=None, Callback=None):
        data = Path(Filename).read_bytes()
        self.uploads.append({'Filename': Filename, 'Bucket': Bucket, 'Key': Key, 'ExtraArgs': ExtraArgs})
        self.objects[Key] = data
        if Callback:
            # Report in two parts like a multi-chunk transfer
            Callback(len(data) // 2)
            Callback(len(data) - len(data) // 2)

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self.objects[Key] = Body

    def get_object(self, Bucket, Key):
        return {'Body': io.BytesIO(self.objects[Key])}

    def get_paginator(self, name):
        assert name == 'list_objects_v2'
        return FakePaginator(self)

    def generate_presigned_url(self, ClientMethod, Params, ExpiresIn):
        self.presigned.append(ExpiresIn)
        return f"https://{Params['Bucket']}.s3.amazonaws.com/{Params['Key']}?X-Amz-Expires={ExpiresIn}"


def make_settings(**overrides) -> Settings:
    values = dict(
        MEDIA_SERVICES_ACCOUNT_NAME="AKIATEST",
        MEDIA_SERVICES_ACCOUNT_KEY="secret",
        REGION_NAME="us-east-1",
        S3_ASSETS_BUCKET=BUCKET,
        MEDIACONVERT_ROLE_ARN="arn:aws:iam::123456789012:role/MediaConvert",
        MEDIACONVERT_ENDPOINT="https://abcd.mediaconvert.us-east-1.amazonaws.com",
        STREAMING_ENDPOINT="https://origin.example.com",
        JOB_POLL_INTERVAL=0,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def job_response(status: str, percent: int | None = None, job_id: str = "1700000000000-abc123", **extra) -> dict:
    job = {'Id': job_id, 'Status': status}
    if percent is not None:
        job['JobPercentComplete'] = percent
    job.update(extra)
    return {'Job': job}


def make_context(**settings_overrides) -> CloudMediaContext:
    mediaconvert = MagicMock()
    mediaconvert.create_job.return_value = job_response('SUBMITTED')
    return CloudMediaContext(
        MediaServicesCredentials("AKIATEST", "secret"),
        make_settings(**settings_overrides),
        s3_client=FakeS3(),
        mediaconvert_client=mediaconvert,
    )


def fake_download_response(body: bytes, status_code: int = 200):
    response = MagicMock()
    response.status_code = status_code
    response.headers = {'Content-Length': str(len(body))}
    response.iter_content.return_value = [body[:len(body) // 2], body[len(body) // 2:]]
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response
