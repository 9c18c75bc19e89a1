"""
Remotion render service integration (scene videos).

Async/polling contract:
  POST {REMOTION_URL}/shopify/videos → {taskId}
  GET  {REMOTION_URL}/tasks/{taskId} → {id, status, stage, progress, videoUrl, error}
"""

import os
import logging
from typing import Optional
from urllib.parse import quote

from .http_client import UpstreamError, request_with_backoff

logger = logging.getLogger(__name__)

SERVICE = "remotion"

DEFAULT_TEMPLATE = "product-modern-v1"

# Scene 3 uses a different visual style than Scene 1
SCENE_TEMPLATES = {
    1: DEFAULT_TEMPLATE,
    3: "product-dynamic-v1",
}

TERMINAL_STATUSES = {"completed", "failed"}


def remotion_base() -> str:
    base = os.environ.get("REMOTION_URL", "").strip()
    if not base:
        raise UpstreamError(SERVICE, "REMOTION_URL is not set in .env")
    return base.rstrip("/")


def template_for_scene(scene_number: int) -> str:
    return SCENE_TEMPLATES.get(scene_number, DEFAULT_TEMPLATE)


async def start_shopify_video(
    template: str,
    image_url: str,
    product: dict,
    user_id: str,
    short_id: str,
) -> str:
    """
    Start rendering a scene video from a composited image.

    Returns:
        The Remotion task id.
    """
    url = f"{remotion_base()}/shopify/videos"
    logger.info(f"Remotion POST {url} template={template} short={short_id}")

    response = await request_with_backoff(
        "POST", url, service=SERVICE, timeout=15, retries=1,
        json={
            "template": template,
            "imageUrl": image_url,
            "product": product,
            "user_id": user_id,
            "short_id": short_id,
        },
    )

    try:
        data = response.json() if response.content else {}
    except ValueError:
        text = response.text
        logger.error(f"Remotion response not JSON: {text[:200]}")
        if response.status_code == 404 or "Cannot POST" in text or "Not Found" in text:
            raise UpstreamError(
                SERVICE,
                f"Remotion server at {url} returned 404. Ensure REMOTION_URL is correct "
                f"and the server has POST /shopify/videos enabled.",
                response.status_code,
            )
        raise UpstreamError(SERVICE, "Remotion server returned invalid response (not JSON).")

    if not response.is_success:
        message = data.get("error") or response.text[:200] or f"HTTP {response.status_code}"
        logger.error(f"Remotion error ({response.status_code}): {message}")
        raise UpstreamError(SERVICE, str(message), response.status_code)

    task_id = (data.get("taskId") or "").strip()
    if not task_id:
        raise UpstreamError(SERVICE, "Remotion did not return taskId")

    logger.info(f"Remotion task started: {task_id}")
    return task_id


async def fetch_task_status(remotion_task_id: str) -> Optional[dict]:
    """Current render status, or None when Remotion cannot be reached."""
    try:
        url = f"{remotion_base()}/tasks/{quote(remotion_task_id, safe='')}"
        response = await request_with_backoff("GET", url, service=SERVICE, timeout=10, retries=0)
        data = response.json() if response.content else {}
    except (UpstreamError, ValueError) as e:
        logger.warning(f"Remotion status for {remotion_task_id} unavailable: {e}")
        return None

    if not isinstance(data, dict):
        return None

    status = data.get("status")
    return {
        "id": str(data.get("id") or remotion_task_id),
        "status": status if status in ("pending", "completed", "failed") else "pending",
        "stage": data.get("stage") if isinstance(data.get("stage"), str) else None,
        "progress": data.get("progress") if isinstance(data.get("progress"), (int, float)) else None,
        "videoUrl": data.get("videoUrl") if isinstance(data.get("videoUrl"), str) else None,
        "error": data.get("error") if isinstance(data.get("error"), str) else None,
    }
