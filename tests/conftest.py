import os
import tempfile
from io import BytesIO
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Importing app builds the module-level service; keep its logs and uploads
# out of the working tree.
SESSION_DIR = tempfile.mkdtemp(prefix="render-to-photo-tests-")
os.environ["LOG_DIR"] = os.path.join(SESSION_DIR, "logs")
os.environ["UPLOAD_DIR"] = os.path.join(SESSION_DIR, "uploads")

from app import create_app  # noqa: E402
from config import Settings  # noqa: E402
from errors import AnalysisError  # noqa: E402
from providers import GeneratedImage  # noqa: E402


def make_image_bytes(fmt="PNG", size=(64, 48), color=(180, 140, 90)):
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def fake_response(status_code=200, json_body=None, text="", reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.reason = reason
    response.text = text
    if isinstance(json_body, Exception):
        response.json.side_effect = json_body
    else:
        response.json.return_value = json_body
    return response


class FakeAnalyzer:
    def __init__(self, result="Sonos Arc Ultra soundbar"):
        self.result = result
        self.calls = []

    def analyze(self, image_path, mime_type):
        self.calls.append((image_path, mime_type, os.path.exists(image_path)))
        return self.result

    def describe(self, image_path, mime_type):
        result = self.analyze(image_path, mime_type)
        if result is None:
            raise AnalysisError("Vision request failed: 503 Service Unavailable")
        return result


class FakeTransformer:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def transform(self, image_path, prompt, mime_type):
        self.calls.append({
            "path": image_path,
            "prompt": prompt,
            "mime_type": mime_type,
            "existed": os.path.exists(image_path),
        })
        if self.error is not None:
            raise self.error
        return GeneratedImage(
            image_url="data:image/png;base64,aGVsbG8=",
            revised_prompt=prompt,
            source="b64_json",
        )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        azure_endpoint="https://example.openai.azure.com/",
        azure_api_key="test-key",
        upload_dir=str(tmp_path / "uploads"),
        log_dir=str(tmp_path / "logs"),
    )


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def transformer():
    return FakeTransformer()


@pytest.fixture
def build_client(settings, analyzer, transformer):
    def _build(settings=settings, analyzer=analyzer, transformer=transformer):
        app = create_app(settings, analyzer=analyzer, transformer=transformer, configure_logging=False)
        return TestClient(app)
    return _build


@pytest.fixture
def client(build_client):
    return build_client()


def uploaded_files(settings):
    if not os.path.isdir(settings.upload_dir):
        return []
    return os.listdir(settings.upload_dir)
