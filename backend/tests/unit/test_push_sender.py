"""
Unit tests for notifications/push_sender.py

Tests the pywebpush call and how push-service errors map to PushResult.
"""

import json
import unittest
from unittest.mock import Mock, patch

import requests
from pywebpush import WebPushException

from models.notification import PushPayload
from notifications.push_sender import WebPushSender
from tests.fixtures.push_factory import create_test_credentials, create_test_subscriber


class TestWebPushSender(unittest.TestCase):
    """Tests for WebPushSender.send()"""

    def setUp(self):
        self.target = create_test_subscriber("s1").subscription_target()
        self.payload = PushPayload(
            title="Spring sale",
            body="Everything is 20% off",
            data={"notificationId": "n-1", "url": "https://shop.example.com/sale?nid=n-1"},
        )
        self.credentials = create_test_credentials()
        self.sender = WebPushSender(ttl=3600, timeout=5)

    @patch("notifications.push_sender.webpush")
    def test_successful_send(self, mock_webpush):
        mock_webpush.return_value = Mock(status_code=201)

        result = self.sender(self.target, self.payload, self.credentials)

        self.assertTrue(result.success)
        self.assertEqual(result.status_code, 201)

        kwargs = mock_webpush.call_args.kwargs
        self.assertEqual(kwargs["subscription_info"]["endpoint"], self.target.endpoint)
        self.assertEqual(kwargs["subscription_info"]["keys"]["auth"], "authsecret")
        self.assertEqual(kwargs["vapid_private_key"], "private-vapid-key-material")
        self.assertEqual(kwargs["vapid_claims"], {"sub": "mailto:ops@example.com"})
        self.assertEqual(kwargs["ttl"], 3600)

        body = json.loads(kwargs["data"])
        self.assertEqual(body["title"], "Spring sale")
        self.assertNotIn("icon", body)
        self.assertEqual(body["data"]["notificationId"], "n-1")

    @patch("notifications.push_sender.webpush")
    def test_gone_statuses(self, mock_webpush):
        for status_code in (404, 410):
            with self.subTest(status_code=status_code):
                mock_webpush.side_effect = WebPushException(
                    "Push failed", response=Mock(status_code=status_code)
                )

                result = self.sender.send(self.target, self.payload, self.credentials)

                self.assertFalse(result.success)
                self.assertTrue(result.is_gone)
                self.assertEqual(result.status_code, status_code)

    @patch("notifications.push_sender.webpush")
    def test_other_push_errors_are_not_gone(self, mock_webpush):
        mock_webpush.side_effect = WebPushException(
            "Push failed: 413 Payload Too Large", response=Mock(status_code=413)
        )

        result = self.sender.send(self.target, self.payload, self.credentials)

        self.assertFalse(result.success)
        self.assertFalse(result.is_gone)
        self.assertIn("413", result.message)

    @patch("notifications.push_sender.webpush")
    def test_error_without_response(self, mock_webpush):
        mock_webpush.side_effect = WebPushException("No response")

        result = self.sender.send(self.target, self.payload, self.credentials)

        self.assertFalse(result.success)
        self.assertFalse(result.is_gone)
        self.assertIsNone(result.status_code)

    @patch("notifications.push_sender.webpush")
    def test_network_error(self, mock_webpush):
        mock_webpush.side_effect = requests.ConnectionError("timed out")

        result = self.sender.send(self.target, self.payload, self.credentials)

        self.assertFalse(result.success)
        self.assertIn("timed out", result.message)


if __name__ == "__main__":
    unittest.main()
