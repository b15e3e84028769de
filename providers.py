"""
Azure OpenAI providers for scene analysis and image transformation.

Responsibilities:
- Describe a stored render with a vision chat-completion call (best effort)
- Send the render plus the composed prompt to the image edit endpoint
- Support the legacy prompt-only generations endpoint
- Normalise URL and base64 results into a single image reference
"""

import base64
import logging
import os
from typing import Optional, Protocol

import requests
from pydantic import BaseModel

from config import Settings
from errors import AnalysisError, ExternalAPIError
from prompts import SCENE_ANALYSIS_PROMPT

logger = logging.getLogger(__name__)

ANALYSIS_MAX_TOKENS = 1000
ANALYSIS_TEMPERATURE = 0.3
GENERATED_IMAGE_MIME = "image/png"


class GeneratedImage(BaseModel):
    image_url: str  # remote URL or data URI
    revised_prompt: str
    source: str  # "url" or "b64_json"


class SceneAnalysisProvider(Protocol):
    def analyze(self, image_path: str, mime_type: str) -> Optional[str]:
        """Best effort: None on any failure."""
        ...

    def describe(self, image_path: str, mime_type: str) -> str:
        """Same call, but raises AnalysisError with the cause."""
        ...


class ImageTransformProvider(Protocol):
    def transform(self, image_path: str, prompt: str, mime_type: str) -> GeneratedImage:
        ...


def _read_base64(image_path: str) -> str:
    with open(image_path, "rb") as f:
        return base64.b64encode(f.read()).decode("utf-8")


def _error_body(response: requests.Response) -> str:
    try:
        return str(response.json())
    except ValueError:
        return response.text


class AzureSceneAnalyzer:
    """
    Lists furniture, materials and fixtures in a render via a vision model.

    analyze() never raises: any failure is logged and reported as None so
    the transformation can go ahead without scene context. describe()
    raises AnalysisError carrying the cause.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.http = session or requests

    def analyze(self, image_path: str, mime_type: str) -> Optional[str]:
        try:
            return self.describe(image_path, mime_type)
        except AnalysisError as e:
            logger.warning(f"Scene analysis skipped: {e.details}")
            return None

    def describe(self, image_path: str, mime_type: str) -> str:
        if not self.settings.is_configured:
            raise AnalysisError("Azure OpenAI endpoint or API key is not configured")

        try:
            image_b64 = _read_base64(image_path)
        except OSError as e:
            raise AnalysisError(f"Could not read image: {e}")

        payload = {
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": SCENE_ANALYSIS_PROMPT},
                        {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{image_b64}"}},
                    ],
                },
            ],
            "max_tokens": ANALYSIS_MAX_TOKENS,
            "temperature": ANALYSIS_TEMPERATURE,
        }

        url = self.settings.vision_url()
        logger.info(f"Calling vision deployment {self.settings.vision_deployment}")
        try:
            response = self.http.post(
                url,
                headers={"api-key": self.settings.azure_api_key, "Content-Type": "application/json"},
                json=payload,
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as e:
            raise AnalysisError(f"Vision request failed: {e}")

        if not response.ok:
            logger.error(f"Vision API error: {_error_body(response)}")
            raise AnalysisError(f"Vision request failed: {response.status_code} {response.reason}")

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AnalysisError(f"Unexpected vision response: {e}")

        if not isinstance(content, str) or not content.strip():
            raise AnalysisError("Vision response contained no text")

        logger.info(f"Scene analysis complete ({len(content)} chars)")
        return content.strip()


class AzureImageTransformer:
    """
    Turns a render into a photorealistic image.

    The default path posts a multipart edit request and gets base64 back;
    the legacy generations mode posts prompt-only JSON and gets a URL.
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.http = session or requests

    def transform(self, image_path: str, prompt: str, mime_type: str) -> GeneratedImage:
        if not self.settings.is_configured:
            raise ExternalAPIError("Azure OpenAI endpoint or API key is not configured")

        url = self.settings.image_url()
        logger.info(f"Calling image deployment {self.settings.image_deployment}: {url}")

        try:
            if self.settings.legacy_mode:
                response = self._post_generation(url, prompt)
            else:
                response = self._post_edit(url, image_path, prompt, mime_type)
        except requests.RequestException as e:
            raise ExternalAPIError(f"API request failed: {e}")
        except OSError as e:
            raise ExternalAPIError(f"Could not read image: {e}")

        if not response.ok:
            logger.error(f"API Error: {_error_body(response)}")
            raise ExternalAPIError(f"API request failed: {response.status_code} {response.reason}")

        try:
            result = response.json()
        except ValueError as e:
            raise ExternalAPIError(f"Invalid JSON from image service: {e}")

        data = result.get("data") if isinstance(result, dict) else None
        if not isinstance(data, list):
            raise ExternalAPIError("Unexpected response from image service: missing 'data'")
        if not data:
            raise ExternalAPIError("No image generated")

        return self._normalise(data[0], prompt)

    def _post_edit(self, url: str, image_path: str, prompt: str, mime_type: str) -> requests.Response:
        form = {
            "prompt": prompt,
            "model": self.settings.image_model,
            "size": self.settings.image_size,
            "quality": self.settings.image_quality,
            "n": "1",
        }
        with open(image_path, "rb") as image_file:
            files = {"image[]": (os.path.basename(image_path), image_file, mime_type)}
            return self.http.post(
                url,
                headers={"api-key": self.settings.azure_api_key},
                data=form,
                files=files,
                timeout=self.settings.request_timeout,
            )

    def _post_generation(self, url: str, prompt: str) -> requests.Response:
        payload = {
            "prompt": prompt,
            "model": self.settings.image_model,
            "size": self.settings.image_size,
            "quality": self.settings.image_quality,
            "n": 1,
        }
        return self.http.post(
            url,
            headers={"api-key": self.settings.azure_api_key, "Content-Type": "application/json"},
            json=payload,
            timeout=self.settings.request_timeout,
        )

    @staticmethod
    def _normalise(item, prompt: str) -> GeneratedImage:
        if not isinstance(item, dict):
            raise ExternalAPIError("Unexpected image entry in response")

        revised = item.get("revised_prompt") or item.get("revisedPrompt") or prompt

        if item.get("b64_json"):
            image_url = f"data:{GENERATED_IMAGE_MIME};base64,{item['b64_json']}"
            return GeneratedImage(image_url=image_url, revised_prompt=revised, source="b64_json")
        if item.get("url"):
            return GeneratedImage(image_url=item["url"], revised_prompt=revised, source="url")

        raise ExternalAPIError("Image service response contained neither 'b64_json' nor 'url'")
