"""
Photoroom API integration for background removal.

Step 1 of every scene: strip the product image's background with the
/v1/segment endpoint and store the cut-out as a public PNG.
"""

import os
import uuid
import logging
from io import BytesIO

import httpx
from PIL import Image, UnidentifiedImageError

from .http_client import UpstreamError, request_with_backoff
from .storage import download_bytes, save_public_asset

logger = logging.getLogger(__name__)

PHOTOROOM_SEGMENT_URL = "https://sdk.photoroom.com/v1/segment"
BG_REMOVED_FOLDER = "bg_removed_images"


def _to_png(image_bytes: bytes) -> bytes:
    """Verify Photoroom returned an image and re-encode it as RGBA PNG."""
    try:
        img = Image.open(BytesIO(image_bytes))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UpstreamError("photoroom", f"Photoroom returned an unreadable image: {e}")

    if img.format == "PNG" and img.mode == "RGBA":
        return image_bytes

    out = BytesIO()
    img.convert("RGBA").save(out, format="PNG")
    return out.getvalue()


def _file_extension(content_type: str) -> str:
    ext = (content_type.split(";")[0].split("/")[-1] or "jpg").strip()
    return "jpg" if ext in ("jpeg", "") else ext


async def remove_background(image_url: str) -> str:
    """
    Remove the background of a product image.

    Returns:
        Public URL of the cut-out PNG.

    Raises:
        UpstreamError: missing key, download failure, or Photoroom error.
    """
    api_key = os.environ.get("PHOTOROOM_API_KEY", "")
    if not api_key:
        raise UpstreamError("photoroom", "PHOTOROOM_API_KEY is not set. Add it to your .env file.")

    try:
        image_bytes, content_type = await download_bytes(image_url, timeout=30)
    except httpx.HTTPError as e:
        raise UpstreamError("photoroom", f"Failed to fetch image: {e}")

    ext = _file_extension(content_type)
    response = await request_with_backoff(
        "POST",
        PHOTOROOM_SEGMENT_URL,
        service="photoroom",
        timeout=60,
        headers={"x-api-key": api_key},
        files={"image_file": (f"image.{ext}", image_bytes, content_type or "image/jpeg")},
    )
    if not response.is_success:
        raise UpstreamError(
            "photoroom",
            f"PhotoRoom API error: {response.status_code} {response.text[:300]}",
            response.status_code,
        )

    png_bytes = _to_png(response.content)
    filename = f"{uuid.uuid4()}.png"
    url = save_public_asset(BG_REMOVED_FOLDER, filename, png_bytes, "image/png")
    logger.info(f"Photoroom cut-out: {image_url} → {url}")
    return url
