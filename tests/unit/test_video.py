import unittest

from dolphin.llm.errors import NoVideoError, PollTimeoutError, TransportError
from dolphin.nodes.video import VideoJobPoller, append_query_param, poll_until
from dolphin.utils.config_loader import VideoSettings
from tests.mocks.fake_genai import FakeGenerativeClient, RecordingSleep, video_operation


class PollUntilTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_fixed_cadence(self) -> None:
        sleep = RecordingSleep()
        values = iter([1, 2, 3])

        async def _refresh(_):
            return next(values)

        outcome = await poll_until(0, _refresh, lambda value: value >= 2, interval_seconds=10, sleep=sleep)
        self.assertEqual(outcome.value, 2)
        self.assertEqual(outcome.cycles, 2)
        self.assertEqual(sleep.calls, [10.0, 10.0])

    async def test_backoff_is_capped(self) -> None:
        sleep = RecordingSleep()

        async def _refresh(value):
            return value + 1

        await poll_until(
            0,
            _refresh,
            lambda value: value >= 4,
            interval_seconds=1,
            backoff_factor=2,
            max_interval_seconds=3,
            sleep=sleep,
        )
        self.assertEqual(sleep.calls, [1.0, 2.0, 3.0, 3.0])

    async def test_max_attempts_raises_poll_timeout(self) -> None:
        async def _refresh(value):
            return value

        with self.assertRaises(PollTimeoutError) as ctx:
            await poll_until(0, _refresh, lambda value: False, interval_seconds=0, max_attempts=3, sleep=RecordingSleep())
        self.assertEqual(ctx.exception.attempts, 3)
        self.assertIsInstance(ctx.exception, TransportError)

    async def test_already_done_does_not_wait(self) -> None:
        sleep = RecordingSleep()

        async def _refresh(value):
            raise AssertionError("should not refresh")

        outcome = await poll_until("done", _refresh, lambda value: True, interval_seconds=10, sleep=sleep)
        self.assertEqual(outcome.cycles, 0)
        self.assertEqual(sleep.calls, [])


class VideoJobPollerTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_two_cycles_then_uri_with_key(self) -> None:
        sleep = RecordingSleep()
        client = FakeGenerativeClient(
            videos=[video_operation(done=False)],
            operations=[
                video_operation(done=False),
                video_operation(done=True, uri="https://media.example/video.mp4"),
            ],
            api_key="secret",
        )
        result = await VideoJobPoller(client, sleep=sleep).generate("A ball rolling down a ramp")

        self.assertEqual(result.uri, "https://media.example/video.mp4?key=secret")
        self.assertEqual(result.poll_cycles, 2)
        self.assertEqual(sleep.calls, [10.0, 10.0])
        self.assertEqual(len(client.operation_calls), 2)

        request = client.video_calls[0]
        self.assertEqual(request["model"], "veo-3.1-fast-generate-preview")
        self.assertEqual(request["config"].number_of_videos, 1)
        self.assertEqual(request["config"].resolution, "720p")
        self.assertEqual(request["config"].aspect_ratio, "16:9")

    async def test_existing_query_string_is_kept(self) -> None:
        self.assertEqual(
            append_query_param("https://media.example/v?alt=media", "key", "k"),
            "https://media.example/v?alt=media&key=k",
        )

    async def test_finished_without_video_raises(self) -> None:
        client = FakeGenerativeClient(videos=[video_operation(done=True)])
        with self.assertRaises(NoVideoError):
            await VideoJobPoller(client, sleep=RecordingSleep()).generate("prompt")

    async def test_finished_with_error_raises_transport(self) -> None:
        client = FakeGenerativeClient(videos=[video_operation(done=True, error={"code": 13, "message": "internal"})])
        with self.assertRaises(TransportError):
            await VideoJobPoller(client, sleep=RecordingSleep()).generate("prompt")

    async def test_poll_attempts_exhausted(self) -> None:
        settings = VideoSettings(poll_interval_seconds=1, max_poll_attempts=2)
        client = FakeGenerativeClient(
            videos=[video_operation(done=False)],
            operations=[video_operation(done=False), video_operation(done=False)],
        )
        with self.assertRaises(PollTimeoutError):
            await VideoJobPoller(client, settings=settings, sleep=RecordingSleep()).generate("prompt")

    async def test_blank_prompt_rejected(self) -> None:
        client = FakeGenerativeClient()
        with self.assertRaises(ValueError):
            await VideoJobPoller(client, sleep=RecordingSleep()).generate("  ")
        self.assertEqual(client.video_calls, [])


if __name__ == "__main__":
    unittest.main()
