"""
Client for the PromoNex processing backend (BACKEND_URL).

Endpoints used:
  POST /image/composite                 — overlay cut-out on a background image
  POST /image/merge-video/start         — overlay cut-out on a stock video (async)
  GET  /image/merge-video/tasks/{id}    — merge-video task status
  POST /background/extract-prompt       — product description → background prompt
  POST /background/generate             — AI background generation (async)
  GET  /background/status/{id}          — background generation status
  POST /merge/finalize                  — stitch scenes + audio + music (async)
  GET  /merge/status/{id}               — finalize status

Start calls raise UpstreamError on failure. Status calls return None on any
failure so the polling loop can simply try again.
"""

import math
import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import quote

from .http_client import (
    UpstreamError,
    backend_base,
    error_message,
    read_json,
    request_with_backoff,
)

logger = logging.getLogger(__name__)

SERVICE = "backend"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _post(path: str, payload: dict, timeout: float) -> dict:
    endpoint = f"{backend_base()}{path}"
    response = await request_with_backoff(
        "POST", endpoint, service=SERVICE, timeout=timeout, retries=1, json=payload,
    )
    data = read_json(response, SERVICE)
    if not response.is_success:
        message = error_message(data, response, "error", "message", "detail")
        logger.error(f"Backend POST {path} failed ({response.status_code}): {message}")
        raise UpstreamError(SERVICE, message, response.status_code)
    return data


async def _get_status(path: str) -> Optional[dict]:
    try:
        endpoint = f"{backend_base()}{path}"
        response = await request_with_backoff(
            "GET", endpoint, service=SERVICE, timeout=15, retries=0,
            headers={"Accept": "application/json"},
        )
        return read_json(response, SERVICE)
    except UpstreamError as e:
        logger.warning(f"Backend status {path} unavailable: {e}")
        return None


def _task_id(data: dict) -> str:
    for key in ("task_id", "id"):
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    raise UpstreamError(SERVICE, "Backend did not return task_id or id")


def _str_or_none(value) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# ── Image compositing ────────────────────────────────────────────────────────

async def composite_images(
    background_url: str,
    overlay_url: str,
    scene_id: str,
    user_id: str = "anonymous",
) -> dict:
    """
    Composite the cut-out (overlay) on a background image.

    Returns:
        {success, image_url, error, message, created_at}
    """
    logger.info(f"Compositing scene={scene_id}: overlay={overlay_url} background={background_url}")
    data = await _post(
        "/image/composite",
        {
            "overlay_url": overlay_url,
            "background_url": background_url,
            "scene_id": scene_id,
            "user_id": user_id,
        },
        timeout=60,
    )
    if not data.get("success"):
        raise UpstreamError(SERVICE, str(data.get("error") or "Composition failed"))

    image_url = _str_or_none(data.get("image_url"))
    if not image_url:
        raise UpstreamError(SERVICE, "Composition succeeded but no image_url was returned")

    return {
        "success": True,
        "image_url": image_url,
        "error": None,
        "message": "Images composited via backend",
        "created_at": _now_iso(),
    }


# ── Image → video merge (Scene 2) ────────────────────────────────────────────

async def merge_video_start(
    product_image_url: str,
    background_video_url: str,
    scene_id: str,
    user_id: str,
    duration: Optional[float] = None,
) -> dict:
    """
    Start overlaying the product cut-out on a stock video.

    duration (seconds) caps the output length; omitted → full background length.
    """
    payload = {
        "product_image_url": product_image_url,
        "background_video_url": background_video_url,
        "scene_id": scene_id,
        "user_id": user_id,
    }
    if duration is not None and math.isfinite(duration) and duration > 0:
        payload["duration"] = duration

    data = await _post("/image/merge-video/start", payload, timeout=30)
    task_id = _task_id(data)
    logger.info(f"Merge-video task started: {task_id} (scene={scene_id})")
    return {"task_id": task_id, "status": data.get("status") or "pending"}


async def merge_video_status(task_id: str) -> Optional[dict]:
    data = await _get_status(f"/image/merge-video/tasks/{quote(task_id, safe='')}")
    if data is None:
        return None
    return {
        "status": data.get("status") if isinstance(data.get("status"), str) else "pending",
        "video_url": _str_or_none(data.get("video_url")),
        "error_message": _str_or_none(data.get("error_message")),
    }


# ── Background prompt / generation ───────────────────────────────────────────

def _optional_fields(**fields) -> dict:
    """Keep only non-blank string fields, stripped."""
    return {
        key: value.strip()
        for key, value in fields.items()
        if isinstance(value, str) and value.strip()
    }


async def extract_background_prompt(
    product_description: str,
    mood: Optional[str] = None,
    style: Optional[str] = None,
    environment: Optional[str] = None,
) -> str:
    """Turn a product description into a background-generation prompt."""
    payload = {
        "product_description": product_description.strip(),
        **_optional_fields(mood=mood, style=style, environment=environment),
    }
    data = await _post("/background/extract-prompt", payload, timeout=20)
    prompt = data.get("prompt")
    if data.get("success") is True and isinstance(prompt, str):
        return prompt
    raise UpstreamError(SERVICE, str(data.get("error") or "Invalid response"))


async def start_background_generation(
    product_description: str,
    user_id: str,
    scene_id: Optional[str] = None,
    short_id: Optional[str] = None,
    manual_prompt: Optional[str] = None,
    mood: Optional[str] = None,
    style: Optional[str] = None,
    environment: Optional[str] = None,
) -> str:
    """Start AI background generation. Returns the backend task id."""
    payload = {
        "product_description": product_description.strip() or "Product",
        "user_id": user_id,
        **_optional_fields(
            scene_id=scene_id,
            short_id=short_id,
            manual_prompt=manual_prompt,
            mood=mood,
            style=style,
            environment=environment,
        ),
    }
    data = await _post("/background/generate", payload, timeout=30)
    task_id = _task_id(data)
    logger.info(f"Background generation started: {task_id} (user={user_id}, scene={scene_id})")
    return task_id


async def get_background_generation_status(task_id: str) -> Optional[dict]:
    data = await _get_status(f"/background/status/{quote(task_id, safe='')}")
    if data is None:
        return None
    return {
        "task_id": task_id,
        "status": data.get("status") if isinstance(data.get("status"), str) else "pending",
        "image_url": _str_or_none(data.get("image_url")),
        "progress": data.get("progress") if isinstance(data.get("progress"), (int, float)) else None,
        "error": _str_or_none(data.get("error")) or _str_or_none(data.get("error_message")),
    }


# ── Finalize (merge scenes + audio + music) ──────────────────────────────────

async def finalize_short_start(user_id: str, short_id: str) -> dict:
    """Start the final merge for a Short."""
    data = await _post("/merge/finalize", {"user_id": user_id, "short_id": short_id}, timeout=30)
    task_id = _task_id(data)
    logger.info(f"Finalize started: short={short_id} task={task_id}")
    return {
        "task_id": task_id,
        "status": data.get("status") or "pending",
        "short_id": data.get("short_id") or short_id,
        "user_id": data.get("user_id") or user_id,
        "message": data.get("message") or "Finalization task started",
    }


async def finalize_short_status(task_id: str) -> Optional[dict]:
    data = await _get_status(f"/merge/status/{quote(task_id, safe='')}")
    if data is None:
        return None
    return {
        "task_id": task_id,
        "status": data.get("status") if isinstance(data.get("status"), str) else "pending",
        "final_video_url": _str_or_none(data.get("final_video_url")) or _str_or_none(data.get("video_url")),
        "progress": data.get("progress") if isinstance(data.get("progress"), (int, float)) else None,
        "error": _str_or_none(data.get("error")) or _str_or_none(data.get("error_message")),
    }
