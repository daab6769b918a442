import base64
import logging
import os
from typing import Optional, Protocol

import requests

from cardlens.core import constants
from cardlens.core.errors import (
    FailureReason, RecognitionError, RemoteTimeoutError, RemoteUnavailableError
)
from cardlens.services.scanner.models import RemoteIdentification

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_MODELS_URL = "https://api.anthropic.com/v1/models"
ANTHROPIC_VERSION = "2023-06-01"

CARD_NAME_PROMPT = """Analyze this Magic: The Gathering card image and identify the exact card name.

INSTRUCTIONS:
- Look carefully at the card name in the title area (top section of the card)
- Return ONLY the exact card name as it appears on the card
- If the text is unclear or unreadable, return "UNCLEAR"
- Examples: "Lightning Bolt", "Gilded Lotus", "Roghakh, Son of Rohgahh"

Card name:"""

UNCLEAR_MARKER = "UNCLEAR"


class RemoteVisionCapability(Protocol):
    def identify(self, image_bytes: bytes, prompt_text: str) -> RemoteIdentification:
        ...

    def check_health(self) -> bool:
        ...


def parse_card_name_reply(text: Optional[str],
                          confidence: float = constants.REMOTE_SUCCESS_CONFIDENCE) -> RemoteIdentification:
    """Turns the model's free-text answer into an identification."""
    name = (text or "").strip()
    if name.lower().startswith("card name:"):
        name = name[len("card name:"):].strip()
    name = name.strip('"').strip()

    if name.upper() == UNCLEAR_MARKER or len(name) < 2:
        return RemoteIdentification(
            success=False, unclear=True, confidence=0.0,
            diagnostic="Image unclear to the vision service",
        )
    return RemoteIdentification(success=True, card_name=name, confidence=confidence)


def _post(url: str, timeout: float, **kwargs) -> requests.Response:
    try:
        return requests.post(url, timeout=timeout, **kwargs)
    except requests.Timeout as e:
        raise RemoteTimeoutError(f"Vision request timed out: {e}")
    except requests.ConnectionError as e:
        raise RemoteUnavailableError(f"Vision service not reachable: {e}")


class VisionProxyClient:
    """Client for the local vision proxy (POST {base64Image, prompt}, GET /health)."""

    def __init__(self, url: str, health_url: str, timeout: float = constants.REMOTE_TIMEOUT_S):
        self.url = url
        self.health_url = health_url
        self.timeout = timeout

    def identify(self, image_bytes: bytes, prompt_text: str) -> RemoteIdentification:
        payload = {
            "base64Image": base64.b64encode(image_bytes).decode("ascii"),
            "prompt": prompt_text,
        }
        response = _post(self.url, self.timeout, json=payload)
        if response.status_code != 200:
            try:
                error = response.json().get("error", "Unknown error")
            except ValueError:
                error = "Unknown error"
            raise RecognitionError(f"Proxy server error: {response.status_code} - {error}",
                                   FailureReason.REMOTE_ERROR)

        data = response.json()
        card_name = data.get("cardName")
        confidence = data.get("confidence") or constants.REMOTE_SUCCESS_CONFIDENCE
        logger.info(f"Vision proxy response: {card_name}")
        return parse_card_name_reply(card_name, float(confidence))

    def check_health(self) -> bool:
        try:
            response = requests.get(self.health_url, timeout=5)
        except requests.RequestException as e:
            logger.warning(f"Vision proxy health check failed: {e}")
            return False
        if response.status_code != 200:
            return False
        data = response.json()
        healthy = data.get("status") == "OK" and bool(data.get("apiKeyConfigured"))
        if not healthy:
            logger.warning(f"Vision proxy unhealthy: {data}")
        return healthy


class AnthropicVisionClient:
    """Calls the Anthropic Messages API directly with the card image."""

    def __init__(self, api_key: Optional[str] = None, model: str = "claude-3-5-sonnet-20241022",
                 timeout: float = constants.REMOTE_TIMEOUT_S, max_tokens: int = 300):
        self.api_key = api_key if api_key is not None else os.environ.get("ANTHROPIC_API_KEY", "")
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    def _headers(self):
        return {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    def identify(self, image_bytes: bytes, prompt_text: str) -> RemoteIdentification:
        if not self.api_key:
            raise RemoteUnavailableError("ANTHROPIC_API_KEY is not set")

        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": "image/jpeg",
                            "data": base64.b64encode(image_bytes).decode("ascii"),
                        },
                    },
                    {"type": "text", "text": prompt_text},
                ],
            }],
        }
        response = _post(ANTHROPIC_MESSAGES_URL, self.timeout, headers=self._headers(), json=body)
        if response.status_code != 200:
            raise RecognitionError(f"Anthropic API error: {response.status_code} {response.text[:200]}",
                                   FailureReason.REMOTE_ERROR)

        blocks = response.json().get("content", [])
        text = " ".join(b.get("text", "") for b in blocks if b.get("type") == "text")
        logger.info(f"Vision model response: {text.strip()}")
        return parse_card_name_reply(text)

    def check_health(self) -> bool:
        if not self.api_key:
            return False
        try:
            response = requests.get(ANTHROPIC_MODELS_URL, headers=self._headers(), timeout=5)
        except requests.RequestException as e:
            logger.warning(f"Anthropic API not reachable: {e}")
            return False
        return response.status_code == 200
