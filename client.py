# How a script would use the render service instead of the browser UI
import argparse
import base64
import os
import sys
from typing import Optional

import requests

DEFAULT_BASE_URL = "http://localhost:5000"


def _post_image(url: str, image_path: str, data: Optional[dict] = None, timeout: float = 180) -> dict:
    with open(image_path, "rb") as f:
        response = requests.post(
            url,
            files={"image": (os.path.basename(image_path), f, _guess_mime(image_path))},
            data=data or {},
            timeout=timeout,
        )

    # Print status code for debugging
    print(f"Status Code: {response.status_code}")

    body = response.json()
    if response.status_code != 200:
        raise RuntimeError(f"{body.get('error', 'Request failed')}: {body.get('details', response.text)}")
    return body


def _guess_mime(image_path: str) -> str:
    ext = os.path.splitext(image_path)[1].lower()
    return {".png": "image/png", ".webp": "image/webp"}.get(ext, "image/jpeg")


def save_image_reference(image_url: str, output_path: str, timeout: float = 60) -> str:
    """Write a data URI or download a remote URL to output_path."""
    if image_url.startswith("data:"):
        _, encoded = image_url.split(",", 1)
        content = base64.b64decode(encoded)
    else:
        response = requests.get(image_url, timeout=timeout)
        response.raise_for_status()
        content = response.content

    with open(output_path, "wb") as f:
        f.write(content)
    return output_path


def transform_render(
    image_path: str,
    base_url: str = DEFAULT_BASE_URL,
    instructions: Optional[str] = None,
    analyze_first: bool = False,
    output_path: Optional[str] = None,
) -> dict:
    """
    Send a render to /api/transform, optionally running /api/analyze first
    and forwarding its text as sceneAnalysis. Saves the result if asked.
    """
    base_url = base_url.rstrip("/")
    data = {}
    if instructions:
        data["instructions"] = instructions

    if analyze_first:
        analysis = _post_image(f"{base_url}/api/analyze", image_path)
        print("\n=== Scene Analysis ===")
        print(analysis["analysis"])
        data["sceneAnalysis"] = analysis["analysis"]

    result = _post_image(f"{base_url}/api/transform", image_path, data=data)
    print("\n=== Transformation Successful ===")
    print(f"Revised prompt: {result.get('revisedPrompt', '')[:200]}")

    if output_path:
        save_image_reference(result["imageUrl"], output_path)
        print(f"Saved image to {output_path}")
    return result


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Turn a 3D render into a photorealistic photo")
    parser.add_argument("image", help="Path to the rendered image (jpg, png or webp)")
    parser.add_argument("-o", "--output", default="photoreal.png", help="Where to save the result")
    parser.add_argument("-i", "--instructions", help="Extra instructions for the image model")
    parser.add_argument("--analyze", action="store_true", help="Run scene analysis first")
    parser.add_argument("--url", default=os.getenv("RENDER_SERVICE_URL", DEFAULT_BASE_URL))
    args = parser.parse_args(argv)

    try:
        transform_render(
            args.image,
            base_url=args.url,
            instructions=args.instructions,
            analyze_first=args.analyze,
            output_path=args.output,
        )
    except (RuntimeError, requests.RequestException) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
