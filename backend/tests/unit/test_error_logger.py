"""Unit tests for notifications/error_logger.py"""

import os
import tempfile
import unittest
from unittest.mock import patch

from pydantic import SecretStr

from notifications.error_logger import LOG_DIR_ENV, log_notification_error


class TestLogNotificationError(unittest.TestCase):
    """Tests for log_notification_error()"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.env = patch.dict(os.environ, {LOG_DIR_ENV: self.tmp.name})
        self.env.start()

    def tearDown(self):
        self.env.stop()
        self.tmp.cleanup()

    def test_writes_report(self):
        path = log_notification_error(
            error_type="sending",
            error_message="insert failed",
            context={"notification_id": "n-1", "site_id": "site-1"},
        )

        self.assertTrue(path.startswith(self.tmp.name))
        self.assertIn("notification_error_sending_", os.path.basename(path))
        with open(path, encoding="utf-8") as f:
            content = f.read()
        self.assertIn("Error Type: sending", content)
        self.assertIn("Error Message: insert failed", content)
        self.assertIn("notification_id: n-1", content)

    def test_secrets_are_redacted(self):
        path = log_notification_error(
            error_type="credentials",
            error_message="bad key",
            context={
                "vapid_private_key": "raw-private-key",
                "credentials": SecretStr("other-secret"),
                "site": {"auth_key": "subscriber-auth", "id": "site-1"},
            },
        )

        with open(path, encoding="utf-8") as f:
            content = f.read()
        self.assertNotIn("raw-private-key", content)
        self.assertNotIn("other-secret", content)
        self.assertNotIn("subscriber-auth", content)
        self.assertIn("site-1", content)

    def test_reports_in_same_second_do_not_collide(self):
        paths = {log_notification_error("tick", f"error {i}") for i in range(5)}

        self.assertEqual(len(paths), 5)


if __name__ == "__main__":
    unittest.main()
