import base64
import unittest
from unittest.mock import MagicMock, patch

import pytest
import requests

from cardlens.core.errors import (
    FailureReason, RecognitionError, RemoteTimeoutError, RemoteUnavailableError
)
from cardlens.services.remote_vision import (
    CARD_NAME_PROMPT, AnthropicVisionClient, VisionProxyClient, parse_card_name_reply
)


def make_response(status=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    return response


@pytest.mark.parametrize("reply,expected", [
    ("Lightning Bolt", "Lightning Bolt"),
    ('"Black Lotus"', "Black Lotus"),
    ("Card name: Gilded Lotus", "Gilded Lotus"),
    ("  Roghakh, Son of Rohgahh \n", "Roghakh, Son of Rohgahh"),
])
def test_parse_reply_success(reply, expected):
    result = parse_card_name_reply(reply)
    assert result.success
    assert result.card_name == expected
    assert result.confidence == 95.0


@pytest.mark.parametrize("reply", ["UNCLEAR", "unclear", "X", "", None])
def test_parse_reply_unclear(reply):
    result = parse_card_name_reply(reply)
    assert not result.success
    assert result.unclear
    assert result.confidence == 0.0


class TestVisionProxyClient(unittest.TestCase):
    def setUp(self):
        self.client = VisionProxyClient("http://proxy/api/claude-vision", "http://proxy/health", timeout=3)

    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_posts_base64_image(self, mock_post):
        mock_post.return_value = make_response(200, {"success": True, "cardName": "Lightning Bolt", "confidence": 95})

        result = self.client.identify(b"jpegbytes", CARD_NAME_PROMPT)

        self.assertTrue(result.success)
        self.assertEqual(result.card_name, "Lightning Bolt")
        args, kwargs = mock_post.call_args
        self.assertEqual(args[0], "http://proxy/api/claude-vision")
        self.assertEqual(kwargs["json"]["base64Image"], base64.b64encode(b"jpegbytes").decode("ascii"))
        self.assertEqual(kwargs["json"]["prompt"], CARD_NAME_PROMPT)
        self.assertEqual(kwargs["timeout"], 3)

    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_unclear(self, mock_post):
        mock_post.return_value = make_response(200, {"success": True, "cardName": "UNCLEAR", "confidence": 0})
        result = self.client.identify(b"x", "prompt")
        self.assertTrue(result.unclear)

    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_http_error(self, mock_post):
        mock_post.return_value = make_response(400, {"error": "Claude API key not configured"})
        with self.assertRaises(RecognitionError) as ctx:
            self.client.identify(b"x", "prompt")
        self.assertEqual(ctx.exception.reason, FailureReason.REMOTE_ERROR)

    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_connection_refused(self, mock_post):
        mock_post.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(RemoteUnavailableError):
            self.client.identify(b"x", "prompt")

    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_timeout(self, mock_post):
        mock_post.side_effect = requests.Timeout("slow")
        with self.assertRaises(RemoteTimeoutError):
            self.client.identify(b"x", "prompt")

    @patch('cardlens.services.remote_vision.requests.get')
    def test_health(self, mock_get):
        mock_get.return_value = make_response(200, {"status": "OK", "apiKeyConfigured": True})
        self.assertTrue(self.client.check_health())

        mock_get.return_value = make_response(200, {"status": "OK", "apiKeyConfigured": False})
        self.assertFalse(self.client.check_health())

        mock_get.side_effect = requests.ConnectionError("down")
        self.assertFalse(self.client.check_health())


class TestAnthropicVisionClient(unittest.TestCase):
    @patch('cardlens.services.remote_vision.requests.post')
    def test_identify_builds_image_message(self, mock_post):
        mock_post.return_value = make_response(200, {"content": [{"type": "text", "text": "Counterspell"}]})
        client = AnthropicVisionClient(api_key="test-key", model="some-model")

        result = client.identify(b"img", "prompt text")

        self.assertEqual(result.card_name, "Counterspell")
        body = mock_post.call_args[1]["json"]
        self.assertEqual(body["model"], "some-model")
        content = body["messages"][0]["content"]
        self.assertEqual(content[0]["type"], "image")
        self.assertEqual(content[0]["source"]["data"], base64.b64encode(b"img").decode("ascii"))
        self.assertEqual(content[1], {"type": "text", "text": "prompt text"})
        self.assertEqual(mock_post.call_args[1]["headers"]["x-api-key"], "test-key")

    def test_missing_key(self):
        client = AnthropicVisionClient(api_key="")
        with self.assertRaises(RemoteUnavailableError):
            client.identify(b"img", "prompt")
        self.assertFalse(client.check_health())

    @patch('cardlens.services.remote_vision.requests.post')
    def test_api_error(self, mock_post):
        mock_post.return_value = make_response(529, text="overloaded")
        with self.assertRaises(RecognitionError) as ctx:
            AnthropicVisionClient(api_key="k").identify(b"img", "prompt")
        self.assertEqual(ctx.exception.reason, FailureReason.REMOTE_ERROR)

    @patch('cardlens.services.remote_vision.requests.get')
    def test_health_with_key(self, mock_get):
        mock_get.return_value = make_response(200)
        self.assertTrue(AnthropicVisionClient(api_key="k").check_health())
