"""
Generation Service Client
Sends the customer photo, the (color corrected) fabric photo and optional
reference images to the hosted generation service and returns one result
image plus optional styling text.
"""

import asyncio
import base64
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)


class GenerationError(Exception):
    """The generation service failed or returned no image."""


@dataclass
class ImagePart:
    """One encoded input image with its MIME type"""
    data: bytes
    mime_type: str = "image/jpeg"
    role: str = "reference"

    def to_payload(self, role: Optional[str] = None) -> Dict:
        return {
            "role": role or self.role,
            "mimeType": self.mime_type,
            "data": base64.b64encode(self.data).decode("utf-8"),
        }


@dataclass
class GenerationResult:
    """Generated image bytes plus the optional free-text annotation"""
    image: bytes
    mime_type: str = "image/png"
    text: Optional[str] = None
    recommendations: Optional[Dict] = field(default=None)


def parse_designer_recommendations(text: Optional[str]) -> Optional[Dict]:
    """
    Extract styling recommendations from the service's free-text answer.

    A JSON object containing "lookName" is preferred (a malformed one yields
    None); otherwise the first non-empty lines are used as pairing suggestions.
    """
    if not text or not text.strip():
        return None

    match = re.search(r'\{[\s\S]*"lookName"[\s\S]*\}', text)
    if match:
        try:
            parsed = json.loads(match.group(0))
            return {
                "lookName": parsed.get("lookName") or "Curated Look",
                "pairWith": parsed.get("pairWith") or [],
                "stylingTip": parsed.get("stylingTip") or "",
                "occasions": parsed.get("occasions") or [],
            }
        except (json.JSONDecodeError, AttributeError) as e:
            logger.warning(f"Could not parse designer recommendations JSON: {e}")
            return None

    lines = [line.strip() for line in text.splitlines() if line.strip()]
    return {
        "lookName": "Designer's Choice",
        "pairWith": [re.sub(r"^[-•*]\s*", "", line).strip() for line in lines[:3]],
        "stylingTip": lines[3] if len(lines) > 3 else "Let the fabric speak for itself.",
        "occasions": ["Formal Events", "Special Occasions"],
    }


class GenerationClient:
    """
    Client for the hosted generation service.

    The service is treated as a black box: one JSON request with base64
    images and an instruction, one response with an image and optional text.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        timeout: int = 600,
        max_retries: int = 2,
        retry_backoff: float = 2.0,
    ):
        """
        Args:
            api_url: Base URL of the generation service
            api_key: Optional bearer token
            timeout: Request timeout in seconds (default: 600 = 10 minutes for image generation)
            max_retries: Retries for transient failures (502/503, timeouts, connection errors)
            retry_backoff: Seconds to wait per attempt number before retrying
        """
        self.api_url = api_url.rstrip('/')
        self.generate_endpoint = f"{self.api_url}/v1/generate"
        self.api_key = api_key
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        logger.info(f"Initialized generation client with API URL: {self.api_url}")
        logger.info(f"Timeout: {self.timeout}s, Max retries: {self.max_retries}")

    def build_payload(
        self,
        customer: ImagePart,
        fabric: ImagePart,
        instruction: str,
        references: Optional[List[ImagePart]] = None,
    ) -> Dict:
        return {
            "instruction": instruction,
            "images": [customer.to_payload("customer"), fabric.to_payload("fabric")]
            + [part.to_payload() for part in references or []],
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def parse_response(result: Dict) -> GenerationResult:
        """
        Turn the service's JSON answer into a GenerationResult.

        Raises:
            GenerationError: if no image is present or it is not valid base64
        """
        images = result.get("images") or []
        if not images:
            logger.error(f"Response has no images. Keys: {list(result.keys())}")
            raise GenerationError("No images returned from generation service")

        first = images[0]
        if isinstance(first, dict):
            data, mime_type = first.get("data", ""), first.get("mimeType", "image/png")
        else:
            data, mime_type = first, "image/png"
        try:
            image = base64.b64decode(data, validate=True)
        except (ValueError, TypeError) as e:
            raise GenerationError(f"Failed to decode generated image: {e}") from e

        text = result.get("text")
        return GenerationResult(
            image=image,
            mime_type=mime_type,
            text=text,
            recommendations=parse_designer_recommendations(text),
        )

    async def generate(
        self,
        customer: ImagePart,
        fabric: ImagePart,
        instruction: str,
        references: Optional[List[ImagePart]] = None,
    ) -> GenerationResult:
        """
        Request one generated outfit image.

        Raises:
            GenerationError: on non-retryable errors or when all retries failed
        """
        payload = self.build_payload(customer, fabric, instruction, references)
        logger.info(f"Sending generation request to {self.generate_endpoint} with {len(payload['images'])} image(s)")
        logger.info(f"Instruction: {instruction[:100]}...")

        last_error = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                logger.info(f"Retry attempt {attempt}/{self.max_retries}...")
                await asyncio.sleep(self.retry_backoff * attempt)

            timeout = aiohttp.ClientTimeout(total=self.timeout, connect=30, sock_read=self.timeout)
            try:
                async with aiohttp.ClientSession(timeout=timeout) as session:
                    async with session.post(self.generate_endpoint, json=payload, headers=self._headers()) as response:
                        if response.status == 200:
                            try:
                                result = await response.json()
                            except (aiohttp.ContentTypeError, json.JSONDecodeError) as e:
                                raise GenerationError(f"Invalid JSON response from API: {e}") from e
                            generated = self.parse_response(result)
                            logger.info(f"✅ Image generated successfully (attempt {attempt + 1})")
                            return generated

                        error_text = await response.text()
                        if response.status in (502, 503):
                            last_error = f"Generation service temporarily unavailable ({response.status}): {error_text[:200]}"
                            logger.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1})")
                            continue

                        logger.error(f"Generation request failed with status {response.status}: {error_text[:500]}")
                        raise GenerationError(f"Generation service error {response.status}: {error_text[:500]}")

            except asyncio.TimeoutError:
                last_error = f"Request timeout: API did not respond within {self.timeout} seconds"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1})")
            except aiohttp.ClientConnectorError as e:
                last_error = f"Failed to connect to generation service at {self.api_url}: {e}"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1})")
            except aiohttp.ServerDisconnectedError as e:
                last_error = f"Server disconnected during request: {e}"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1})")
            except aiohttp.ClientError as e:
                last_error = f"Request failed: {type(e).__name__}: {e}"
                logger.warning(f"{last_error} (attempt {attempt + 1}/{self.max_retries + 1})")

        raise GenerationError(f"All retry attempts failed. Last error: {last_error}")
