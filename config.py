import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_API_VERSION = "2024-02-01"
DEFAULT_VISION_DEPLOYMENT = "gpt-4o"
DEFAULT_IMAGE_DEPLOYMENT = "gpt-image-1.5"
DEFAULT_IMAGE_MODEL = "gpt-image-1.5"

IMAGE_MODE_EDITS = "edits"
IMAGE_MODE_GENERATIONS = "generations"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """
    Service configuration.

    Built once from the environment and passed into the app, the providers
    and the pipeline, so tests can hand in fake endpoints and credentials.
    """
    azure_endpoint: Optional[str] = None
    azure_api_key: Optional[str] = None
    api_version: str = DEFAULT_API_VERSION
    vision_deployment: str = DEFAULT_VISION_DEPLOYMENT
    image_deployment: str = DEFAULT_IMAGE_DEPLOYMENT
    image_model: str = DEFAULT_IMAGE_MODEL
    image_api_mode: str = IMAGE_MODE_EDITS
    image_quality: str = "high"
    image_size: str = "1024x1024"
    auto_analyze: bool = False
    request_timeout: float = 60.0
    upload_dir: str = "uploads"
    max_upload_bytes: int = 10 * 1024 * 1024
    log_dir: str = "logs"
    port: int = 5000

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Load settings from environment variables (and .env if present)."""
        if load_dotenv_file:
            load_dotenv()

        mode = os.getenv("IMAGE_API_MODE", IMAGE_MODE_EDITS).strip().lower()
        if mode not in (IMAGE_MODE_EDITS, IMAGE_MODE_GENERATIONS):
            raise ValueError(
                f"IMAGE_API_MODE must be '{IMAGE_MODE_EDITS}' or '{IMAGE_MODE_GENERATIONS}', got '{mode}'"
            )
        default_quality = "hd" if mode == IMAGE_MODE_GENERATIONS else "high"

        return cls(
            azure_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT") or None,
            azure_api_key=os.getenv("AZURE_OPENAI_API_KEY") or None,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION", DEFAULT_API_VERSION),
            vision_deployment=os.getenv("AZURE_OPENAI_VISION_DEPLOYMENT", DEFAULT_VISION_DEPLOYMENT),
            image_deployment=os.getenv("AZURE_OPENAI_IMAGE_DEPLOYMENT", DEFAULT_IMAGE_DEPLOYMENT),
            image_model=os.getenv("AZURE_OPENAI_IMAGE_MODEL", DEFAULT_IMAGE_MODEL),
            image_api_mode=mode,
            image_quality=os.getenv("IMAGE_QUALITY", default_quality),
            image_size=os.getenv("IMAGE_SIZE", "1024x1024"),
            auto_analyze=_env_bool("AUTO_ANALYZE"),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "60")),
            upload_dir=os.getenv("UPLOAD_DIR", "uploads"),
            max_upload_bytes=int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))),
            log_dir=os.getenv("LOG_DIR", "logs"),
            port=int(os.getenv("PORT", "5000")),
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.azure_endpoint and self.azure_api_key)

    @property
    def legacy_mode(self) -> bool:
        return self.image_api_mode == IMAGE_MODE_GENERATIONS

    def _deployment_base(self, deployment: str) -> str:
        return f"{self.azure_endpoint.rstrip('/')}/openai/deployments/{deployment}"

    def vision_url(self) -> str:
        return (
            f"{self._deployment_base(self.vision_deployment)}/chat/completions"
            f"?api-version={self.api_version}"
        )

    def image_url(self) -> str:
        operation = "images/generations" if self.legacy_mode else "images/edits"
        return (
            f"{self._deployment_base(self.image_deployment)}/{operation}"
            f"?api-version={self.api_version}"
        )
