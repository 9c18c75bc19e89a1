"""
Per-scene sub-flows.

Image scenes (1 and 3):
  remove background → background (AI generated or a given image URL)
  → composite → Remotion render → poll render → scene ready

Video scene (2):
  remove background → merge the cut-out onto a stock video (8s) → poll
  merge → scene ready

Every intermediate URL is written to the scene row as soon as it exists;
a rerun with the same product image resumes from the furthest step.
"""

import logging
from typing import Callable, Optional

from .. import backend, photoroom, remotion
from ..http_client import UpstreamError
from . import short_service
from .models import (
    SceneRunRequest,
    SceneStatus,
    WorkflowStep,
    DEFAULT_SCENE_DURATION,
    SCENE_ASSET_FIELDS,
    VIDEO_SCENE_NUMBER,
)
from .polling import poll_until

logger = logging.getLogger(__name__)

DONE_STATUSES = {"completed", "success", "succeeded", "done"}
FAILED_STATUSES = {"failed", "error"}

ProgressFn = Callable[[WorkflowStep, str, int], None]


def is_terminal(status: Optional[str]) -> bool:
    return (status or "").lower() in DONE_STATUSES | FAILED_STATUSES


def is_failed(status: Optional[str]) -> bool:
    return (status or "").lower() in FAILED_STATUSES


def _background_changed(scene: dict, request: SceneRunRequest) -> bool:
    if not scene.get("background_url"):
        return False
    if request.background_source == "url":
        requested = (request.background_url or "").strip()
        return bool(requested) and requested != scene["background_url"]
    return bool((request.manual_prompt or "").strip())


def _start_scene(short_id: str, scene_number: int, request: SceneRunRequest) -> dict:
    """
    Mark the scene processing and return the row to resume from.

    Persisted assets are reused only for the same product image; a new image
    clears them. A new background URL or a manual prompt clears the
    background and everything built on it.
    """
    scene = short_service.get_scene(short_id, scene_number)
    fields = {"status": SceneStatus.PROCESSING.value, "image_url": request.image_url, "error": None}
    if scene.get("image_url") and scene["image_url"] != request.image_url:
        fields.update({field: None for field in SCENE_ASSET_FIELDS if field != "image_url"})
    elif _background_changed(scene, request):
        fields.update({"background_url": None, "composited_url": None, "generated_video_url": None})

    short_service.update_scene(scene["id"], **fields)
    return {**scene, **fields}


# ── Shared steps ─────────────────────────────────────────────────────────────

async def _remove_background(scene: dict, request: SceneRunRequest, report: ProgressFn) -> str:
    if scene.get("bg_removed_url"):
        return scene["bg_removed_url"]

    report(WorkflowStep.REMOVING_BG, "Removing product background...", 10)
    bg_removed_url = await photoroom.remove_background(request.image_url)
    short_service.update_scene(scene["id"], bg_removed_url=bg_removed_url)
    return bg_removed_url


async def _generate_background(
    shop: str,
    short_id: str,
    scene_id: str,
    request: SceneRunRequest,
    report: ProgressFn,
) -> str:
    prompt = (request.manual_prompt or "").strip() or None
    if not prompt and request.product_description.strip():
        report(WorkflowStep.BACKGROUND, "Writing background prompt...", 20)
        prompt = await backend.extract_background_prompt(
            request.product_description,
            mood=request.mood,
            style=request.style,
            environment=request.environment,
        )

    report(WorkflowStep.BACKGROUND, "Generating background...", 25)
    task_id = await backend.start_background_generation(
        request.product_description,
        user_id=shop,
        scene_id=scene_id,
        short_id=short_id,
        manual_prompt=prompt,
        mood=request.mood,
        style=request.style,
        environment=request.environment,
    )

    result = await poll_until(
        lambda: backend.get_background_generation_status(task_id),
        lambda s: is_terminal(s["status"]),
        label=f"background {task_id}",
    )
    if is_failed(result["status"]) or not result["image_url"]:
        raise UpstreamError("backend", result["error"] or "Background generation failed")
    return result["image_url"]


async def _background(
    shop: str,
    short_id: str,
    scene: dict,
    request: SceneRunRequest,
    report: ProgressFn,
) -> str:
    if scene.get("background_url"):
        return scene["background_url"]

    if request.background_source == "url":
        if not (request.background_url or "").strip():
            raise ValueError("background_url is required when background_source is 'url'")
        background_url = request.background_url.strip()
    else:
        background_url = await _generate_background(shop, short_id, scene["id"], request, report)

    short_service.update_scene(scene["id"], background_url=background_url)
    return background_url


# ── Image scenes (1 and 3) ───────────────────────────────────────────────────

async def run_image_scene(
    shop: str,
    short_id: str,
    scene_number: int,
    request: SceneRunRequest,
    report: ProgressFn,
) -> str:
    """Build an image scene end to end. Returns the rendered video URL."""
    scene = _start_scene(short_id, scene_number, request)

    bg_removed_url = await _remove_background(scene, request, report)
    background_url = await _background(shop, short_id, scene, request, report)

    composited_url = scene.get("composited_url")
    if not composited_url:
        report(WorkflowStep.COMPOSITING, "Compositing product onto background...", 45)
        composite = await backend.composite_images(background_url, bg_removed_url, scene["id"], shop)
        composited_url = composite["image_url"]
        short_service.update_scene(scene["id"], composited_url=composited_url)

    report(WorkflowStep.RENDERING, "Rendering scene video...", 60)
    template = remotion.template_for_scene(scene_number)
    product = request.product.model_dump()
    remotion_task_id = await remotion.start_shopify_video(
        template, composited_url, product, shop, short_id,
    )
    task = short_service.create_render_task(
        remotion_task_id, short_id, scene["id"], template, product, composited_url,
    )

    result = await poll_until(
        lambda: short_service.refresh_render_task(task["id"]),
        lambda t: t["status"] in remotion.TERMINAL_STATUSES,
        label=f"render {remotion_task_id}",
    )
    if result["status"] != "completed" or not result["videoUrl"]:
        raise UpstreamError("remotion", result["error"] or "Scene render failed")
    return result["videoUrl"]


# ── Video scene (2) ──────────────────────────────────────────────────────────

async def run_video_scene(
    shop: str,
    short_id: str,
    request: SceneRunRequest,
    report: ProgressFn,
) -> str:
    """Merge the cut-out onto a stock video. Returns the merged video URL."""
    if not (request.background_url or "").strip():
        raise ValueError("background_url (stock video) is required for scene 2")

    scene = _start_scene(short_id, VIDEO_SCENE_NUMBER, request)

    bg_removed_url = await _remove_background(scene, request, report)
    background_url = request.background_url.strip()
    short_service.update_scene(scene["id"], background_url=background_url)

    report(WorkflowStep.MERGING, "Merging product onto stock video...", 50)
    started = await backend.merge_video_start(
        bg_removed_url, background_url, scene["id"], shop, duration=DEFAULT_SCENE_DURATION,
    )
    task_id = started["task_id"]

    result = await poll_until(
        lambda: backend.merge_video_status(task_id),
        lambda s: is_terminal(s["status"]),
        label=f"merge-video {task_id}",
    )
    if is_failed(result["status"]) or not result["video_url"]:
        raise UpstreamError("backend", result["error_message"] or "Video merge failed")

    short_service.update_scene(
        scene["id"],
        generated_video_url=result["video_url"],
        status=SceneStatus.READY.value,
    )
    return result["video_url"]


async def run_scene(
    shop: str,
    short_id: str,
    scene_number: int,
    request: SceneRunRequest,
    report: ProgressFn,
) -> str:
    """Dispatch to the scene's flow; a failure marks the scene failed and re-raises."""
    scene_id, _ = short_service.ensure_scene(short_id, scene_number)
    try:
        if scene_number == VIDEO_SCENE_NUMBER:
            return await run_video_scene(shop, short_id, request, report)
        return await run_image_scene(shop, short_id, scene_number, request, report)
    except Exception as e:
        short_service.update_scene(scene_id, status=SceneStatus.FAILED.value, error=str(e))
        raise
