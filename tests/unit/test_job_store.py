import unittest

from dolphin.api.runtime import (
    JobQueueFullError,
    SessionNotFoundError,
    SessionRegistry,
    VideoJobStore,
)


class JobStoreTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_submit_pop_and_complete(self) -> None:
        store = VideoJobStore(max_queue_size=4, retention_seconds=120)
        submitted = await store.submit(session_id="s1")
        self.assertEqual(submitted["status"], "queued")
        self.assertEqual(submitted["queue_position"], 1)
        self.assertEqual(submitted["kind"], "video")

        running = await store.pop_next()
        self.assertEqual(running["status"], "running")
        self.assertEqual(running["session_id"], "s1")

        done = await store.set_terminal(job_id=running["job_id"], status="succeeded", result={"video_uri": "u"})
        self.assertEqual(done["status"], "succeeded")
        fetched = await store.get(running["job_id"])
        self.assertEqual(fetched["result"]["video_uri"], "u")

    async def test_queue_capacity(self) -> None:
        store = VideoJobStore(max_queue_size=1, retention_seconds=120)
        await store.submit(session_id="s1")
        with self.assertRaises(JobQueueFullError):
            await store.submit(session_id="s2")

    async def test_cancel_queued_job(self) -> None:
        store = VideoJobStore(max_queue_size=4, retention_seconds=120)
        submitted = await store.submit(session_id="s1")
        canceled = await store.cancel(submitted["job_id"])
        self.assertEqual(canceled["status"], "canceled")
        self.assertEqual(await store.queue_depth(), 0)

    async def test_cancel_running_marks_request(self) -> None:
        store = VideoJobStore(max_queue_size=4, retention_seconds=120)
        submitted = await store.submit(session_id="s1")
        await store.pop_next()

        canceled = await store.cancel(submitted["job_id"])
        self.assertEqual(canceled["status"], "running")
        self.assertTrue(canceled["cancel_requested"])

        final = await store.set_terminal(job_id=submitted["job_id"], status="succeeded", result={"x": 1})
        self.assertEqual(final["status"], "canceled")
        self.assertIsNone(final["result"])

    async def test_active_job_lookup(self) -> None:
        store = VideoJobStore(max_queue_size=4, retention_seconds=120)
        self.assertIsNone(await store.active_for_session("s1"))
        submitted = await store.submit(session_id="s1")
        active = await store.active_for_session("s1")
        self.assertEqual(active["job_id"], submitted["job_id"])
        await store.set_terminal(job_id=submitted["job_id"], status="failed", error="x")
        self.assertIsNone(await store.active_for_session("s1"))


class SessionRegistryTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_least_recently_used_is_evicted(self) -> None:
        registry = SessionRegistry(factory=lambda session_id: {"id": session_id}, max_sessions=2)
        first = await registry.create()
        second = await registry.create()
        await registry.get(first["id"])
        await registry.create()

        self.assertEqual((await registry.get(first["id"]))["id"], first["id"])
        with self.assertRaises(SessionNotFoundError):
            await registry.get(second["id"])
        self.assertEqual(await registry.count(), 2)

    async def test_remove_unknown_session(self) -> None:
        registry = SessionRegistry(factory=lambda session_id: session_id)
        with self.assertRaises(SessionNotFoundError):
            await registry.remove("missing")


if __name__ == "__main__":
    unittest.main()
