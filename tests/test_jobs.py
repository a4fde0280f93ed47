import threading
import unittest

from media_service.core.errors import JobFailedError, MediaServicesError
from media_service.services.jobs import BITRATE_PRESETS, JobState
from support import job_response, make_context


class TestJobCreation(unittest.TestCase):
    def setUp(self):
        self.context = make_context()
        self.input_asset = self.context.assets.create_empty("clip.mp4")
        self.context.s3_client.objects[f"{self.input_asset.prefix}/clip.mp4"] = b"video"

    def _job(self, preset="H264 Multiple Bitrate 720p"):
        return self.context.jobs.create_with_single_task(
            "Media Encoder Standard", preset, self.input_asset, "Adaptive Bitrate MP4")

    def test_unknown_preset(self):
        with self.assertRaises(ValueError):
            self._job(preset="Nope")

    def test_unknown_processor(self):
        with self.assertRaises(ValueError):
            self.context.jobs.create_with_single_task(
                "Some Other Encoder", "H264 Multiple Bitrate 720p", self.input_asset, "out")

    def test_submit_builds_single_output_group(self):
        job = self._job()
        job.submit()

        kwargs = self.context.mediaconvert_client.create_job.call_args.kwargs
        self.assertEqual(kwargs['Queue'], 'Default')
        self.assertEqual(kwargs['Role'], self.context.settings.MEDIACONVERT_ROLE_ARN)
        self.assertEqual(kwargs['UserMetadata']['Encoder'], "Media Encoder Standard")
        inputs = kwargs['Settings']['Inputs']
        self.assertEqual(inputs[0]['FileInput'], f"s3://{self.context.bucket}/{self.input_asset.prefix}/clip.mp4")

        groups = kwargs['Settings']['OutputGroups']
        self.assertEqual(len(groups), 1)
        self.assertEqual(len(groups[0]['Outputs']), len(BITRATE_PRESETS["H264 Multiple Bitrate 720p"]))
        destination = groups[0]['OutputGroupSettings']['FileGroupSettings']['Destination']
        self.assertTrue(destination.startswith(f"s3://{self.context.bucket}/assets/"))
        self.assertTrue(destination.endswith("/"))

        self.assertEqual(job.id, "1700000000000-abc123")
        self.assertIs(job.state, JobState.QUEUED)

    def test_submit_twice(self):
        job = self._job()
        job.submit()
        with self.assertRaises(MediaServicesError):
            job.submit()

    def test_progress_task_requires_submission(self):
        with self.assertRaises(MediaServicesError):
            self._job().start_execution_progress_task()


class TestJobProgress(unittest.TestCase):
    def setUp(self):
        self.context = make_context()
        self.input_asset = self.context.assets.create_empty("clip.mp4")
        self.context.s3_client.objects[f"{self.input_asset.prefix}/clip.mp4"] = b"video"
        self.job = self.context.jobs.create_with_single_task(
            "Media Encoder Standard", "H264 Multiple Bitrate 720p", self.input_asset, "Adaptive Bitrate MP4")
        self.job.submit()

    def test_completes_with_one_output_asset(self):
        self.context.mediaconvert_client.get_job.side_effect = [
            job_response('SUBMITTED'),
            job_response('PROGRESSING', 40),
            job_response('PROGRESSING', 40),
            job_response('PROGRESSING', 90),
            job_response('COMPLETE', 100),
        ]
        updates = []

        finished = self.job.start_execution_progress_task(
            lambda j: updates.append((j.state, j.get_overall_progress()))).result(timeout=5)

        self.assertIs(finished, self.job)
        self.assertEqual(len(finished.output_media_assets), 1)
        self.assertEqual(finished.output_media_assets[0].name, "Adaptive Bitrate MP4")
        self.assertEqual(finished.output_media_assets[0].manifest_name, "clip")
        # Unchanged polls are not reported
        self.assertEqual(updates, [
            (JobState.QUEUED, 0.0),
            (JobState.PROCESSING, 40.0),
            (JobState.PROCESSING, 90.0),
            (JobState.FINISHED, 100.0),
        ])

    def test_error_state_fails_the_future(self):
        self.context.mediaconvert_client.get_job.side_effect = [
            job_response('PROGRESSING', 10),
            job_response('ERROR', ErrorMessage="Unsupported input"),
        ]

        future = self.job.start_execution_progress_task()
        with self.assertRaises(JobFailedError) as ctx:
            future.result(timeout=5)
        self.assertEqual(ctx.exception.state, 'Error')
        self.assertIn("Unsupported input", str(ctx.exception))
        self.assertEqual(self.job.output_media_assets, [])

    def test_canceled_state_fails_the_future(self):
        self.context.mediaconvert_client.get_job.return_value = job_response('CANCELED')

        with self.assertRaises(JobFailedError):
            self.job.start_execution_progress_task().result(timeout=5)

    def test_cancel_event_cancels_remote_job(self):
        cancel = threading.Event()
        cancel.set()

        with self.assertRaises(JobFailedError):
            self.job.start_execution_progress_task(cancel_event=cancel).result(timeout=5)
        self.context.mediaconvert_client.cancel_job.assert_called_once_with(Id=self.job.id)
        self.context.mediaconvert_client.get_job.assert_not_called()

    def test_stop_event_ends_polling_without_canceling(self):
        context = make_context(JOB_POLL_INTERVAL=60)
        input_asset = context.assets.create_empty("clip.mp4")
        context.s3_client.objects[f"{input_asset.prefix}/clip.mp4"] = b"video"
        job = context.jobs.create_with_single_task(
            "Media Encoder Standard", "H264 Multiple Bitrate 720p", input_asset, "Adaptive Bitrate MP4")
        job.submit()
        context.mediaconvert_client.get_job.return_value = job_response('PROGRESSING', 20)
        polled = threading.Event()
        stop = threading.Event()

        future = job.start_execution_progress_task(lambda j: polled.set(), stop_event=stop)
        self.assertTrue(polled.wait(timeout=5))
        stop.set()

        # Noticed long before the 60 second poll interval runs out
        with self.assertRaises(MediaServicesError) as ctx:
            future.result(timeout=5)
        self.assertNotIsInstance(ctx.exception, JobFailedError)
        context.mediaconvert_client.cancel_job.assert_not_called()
        self.assertEqual(context.mediaconvert_client.get_job.call_count, 1)

    def test_unknown_status(self):
        self.context.mediaconvert_client.get_job.return_value = job_response('MYSTERY')

        with self.assertRaises(MediaServicesError):
            self.job.start_execution_progress_task().result(timeout=5)


if __name__ == '__main__':
    unittest.main()
