import json
import logging
import unittest

from dolphin.utils.logger import JsonFormatter, configure_logging


class JsonFormatterTestCase(unittest.TestCase):
    def test_extra_fields_are_merged(self) -> None:
        record = logging.makeLogRecord(
            {"name": "dolphin.video", "levelname": "INFO", "msg": "video_done cycles=%d", "args": (2,), "session_id": "s1"}
        )
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "video_done cycles=2")
        self.assertEqual(payload["logger"], "dolphin.video")
        self.assertEqual(payload["session_id"], "s1")
        self.assertTrue(payload["timestamp"].endswith("Z"))
        self.assertNotIn("args", payload)

    def test_configure_quiets_transport_loggers(self) -> None:
        root = logging.getLogger()
        previous_handlers, previous_level = root.handlers[:], root.level
        try:
            configure_logging("INFO", quiet=("dolphin.test.noisy",))
            self.assertIsInstance(root.handlers[0].formatter, JsonFormatter)
            self.assertEqual(logging.getLogger("dolphin.test.noisy").level, logging.WARNING)
        finally:
            root.handlers = previous_handlers
            root.setLevel(previous_level)


if __name__ == "__main__":
    unittest.main()
