"""
Short / Scene / Task / Audio persistence.

Manages the lifecycle of a promo video project:
  - Create a Short (optionally with its three scenes)
  - Ensure / update / reset scenes for regeneration
  - Mirror Remotion render tasks and propagate finished videos to scenes
  - Save background music, audio script, voice-over and the final video
  - List finished videos for the shop

All mutations go through the Supabase service role (RLS bypass). Lookups by
id raise LookupError; operations called with a shop refuse Shorts that
belong to another shop (PermissionError).
"""

import logging
from typing import Any, Optional
from uuid import uuid4

from .. import remotion
from .db import get_client, now_iso, first_row
from .models import (
    BgMusic,
    SceneStatus,
    ShortStatus,
    TaskStatus,
    SCENE_NUMBERS,
    SCENE_ASSET_FIELDS,
    DEFAULT_SCENE_DURATION,
    DEFAULT_SHORT_TITLE,
)

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# A. Shorts
# ═════════════════════════════════════════════════════════════════════════════

def _check_owner(short: dict, shop: Optional[str]):
    if shop is not None and short.get("user_id") != shop:
        raise PermissionError("You do not own this short")


def get_short(short_id: str, shop: Optional[str] = None) -> dict:
    sb = get_client()
    short = first_row(sb.table("shorts").select("*").eq("id", short_id).limit(1).execute())
    if not short:
        raise LookupError("Short not found")
    _check_owner(short, shop)
    return short


def _update_short(short_id: str, fields: dict):
    sb = get_client()
    sb.table("shorts").update({**fields, "updated_at": now_iso()}).eq("id", short_id).execute()


def create_short(
    shop: str,
    title: Optional[str] = None,
    product_id: Optional[str] = None,
    with_scenes: bool = False,
) -> dict:
    """
    Create a draft Short owned by the shop.

    Returns:
        {"shortId": ..., "sceneIds": {1: ..., 2: ..., 3: ...}}; sceneIds is
        empty unless with_scenes is set.
    """
    sb = get_client()
    short_id = str(uuid4())
    title = title.strip() if isinstance(title, str) and title.strip() else DEFAULT_SHORT_TITLE
    product_id = product_id.strip() if isinstance(product_id, str) and product_id.strip() else None

    sb.table("shorts").insert({
        "id": short_id,
        "title": title,
        "user_id": shop,
        "product_id": product_id,
        "status": ShortStatus.DRAFT.value,
        "final_video_url": None,
        "metadata": {"productId": product_id} if product_id else {},
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }).execute()

    scene_ids = {}
    if with_scenes:
        for number in SCENE_NUMBERS:
            scene_ids[number], _ = ensure_scene(short_id, number)

    logger.info(f"Short created: {short_id} shop={shop} product={product_id}")
    return {"shortId": short_id, "sceneIds": scene_ids}


def mark_finalizing(short_id: str):
    _update_short(short_id, {"status": ShortStatus.FINALIZING.value})


def mark_draft(short_id: str):
    _update_short(short_id, {"status": ShortStatus.DRAFT.value})


def save_final_video(short_id: str, final_video_url: Optional[str], shop: Optional[str] = None) -> Optional[str]:
    """Store the merged video. A URL makes the Short ready, none returns it to draft."""
    get_short(short_id, shop)
    url = final_video_url.strip() if isinstance(final_video_url, str) and final_video_url.strip() else None
    _update_short(short_id, {
        "final_video_url": url,
        "status": ShortStatus.READY.value if url else ShortStatus.DRAFT.value,
    })
    logger.info(f"Final video saved: short={short_id} url={url}")
    return url


def save_bg_music(short_id: str, bg_music: Optional[dict], shop: Optional[str] = None) -> Optional[dict]:
    """Merge the normalised track into metadata.bgMusic; None clears it."""
    short = get_short(short_id, shop)
    payload = BgMusic.from_track(bg_music).model_dump() if isinstance(bg_music, dict) else None

    metadata = dict(short.get("metadata") or {})
    metadata["bgMusic"] = payload
    _update_short(short_id, {"metadata": metadata})
    return payload


def reset_short(short_id: str, shop: Optional[str] = None):
    """Start from scratch: final video cleared, status draft, every scene pending."""
    get_short(short_id, shop)
    _update_short(short_id, {"final_video_url": None, "status": ShortStatus.DRAFT.value})

    sb = get_client()
    sb.table("video_scenes").update({
        **{field: None for field in SCENE_ASSET_FIELDS},
        "status": SceneStatus.PENDING.value,
        "error": None,
        "updated_at": now_iso(),
    }).eq("short_id", short_id).execute()
    logger.info(f"Short reset: {short_id}")


# ═════════════════════════════════════════════════════════════════════════════
# B. Scenes
# ═════════════════════════════════════════════════════════════════════════════

def list_scenes(short_id: str) -> list[dict]:
    sb = get_client()
    result = sb.table("video_scenes").select("*").eq("short_id", short_id).order("scene_number").execute()
    return result.data or []


def get_scene(short_id: str, scene_number: int) -> Optional[dict]:
    sb = get_client()
    result = (
        sb.table("video_scenes")
        .select("*")
        .eq("short_id", short_id)
        .eq("scene_number", scene_number)
        .limit(1)
        .execute()
    )
    return first_row(result)


def get_scene_for_short(scene_id: str, short_id: str) -> dict:
    """Look up a scene by id, refusing scenes that belong to another Short."""
    sb = get_client()
    scene = first_row(sb.table("video_scenes").select("*").eq("id", scene_id).limit(1).execute())
    if not scene:
        raise LookupError("Scene not found")
    if scene.get("short_id") != short_id:
        raise PermissionError("Scene does not belong to this short")
    return scene


def ensure_scene(short_id: str, scene_number: int) -> tuple[str, bool]:
    """
    Find or create the scene row.

    Returns:
        (scene_id, created)
    """
    if scene_number not in SCENE_NUMBERS:
        raise ValueError("sceneNumber must be 1, 2, or 3")

    existing = get_scene(short_id, scene_number)
    if existing:
        return existing["id"], False

    sb = get_client()
    scene_id = str(uuid4())
    sb.table("video_scenes").insert({
        "id": scene_id,
        "short_id": short_id,
        "scene_number": scene_number,
        "duration": DEFAULT_SCENE_DURATION,
        "status": SceneStatus.PENDING.value,
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }).execute()
    return scene_id, True


def update_scene(scene_id: str, **fields: Any):
    sb = get_client()
    sb.table("video_scenes").update({**fields, "updated_at": now_iso()}).eq("id", scene_id).execute()


def reset_scene(short_id: str, scene_number: int) -> str:
    """Clear one scene's assets for regeneration. Returns the scene id."""
    scene_id, _ = ensure_scene(short_id, scene_number)
    update_scene(
        scene_id,
        **{field: None for field in SCENE_ASSET_FIELDS},
        status=SceneStatus.PENDING.value,
        error=None,
    )
    return scene_id


# ═════════════════════════════════════════════════════════════════════════════
# C. Render tasks (Remotion mirror)
# ═════════════════════════════════════════════════════════════════════════════

def create_render_task(
    remotion_task_id: str,
    short_id: str,
    scene_id: Optional[str],
    template: str,
    product: dict,
    image_url: str,
) -> dict:
    sb = get_client()
    row = {
        "id": str(uuid4()),
        "remotion_task_id": remotion_task_id,
        "short_id": short_id,
        "video_scene_id": scene_id,
        "status": TaskStatus.PENDING.value,
        "stage": "queued",
        "progress": 0,
        "video_url": None,
        "error": None,
        "metadata": {"template": template, "product": product, "imageUrl": image_url},
        "created_at": now_iso(),
    }
    sb.table("tasks").insert(row).execute()
    return row


def get_task(task_id: str, shop: Optional[str] = None) -> dict:
    sb = get_client()
    task = first_row(sb.table("tasks").select("*").eq("id", task_id).limit(1).execute())
    if not task:
        raise LookupError("Task not found")
    if shop is not None:
        get_short(task["short_id"], shop)
    return task


def update_task(task_id: str, **fields: Any):
    sb = get_client()
    sb.table("tasks").update(fields).eq("id", task_id).execute()


def _task_view(task: dict) -> dict:
    return {
        "id": task["id"],
        "status": task.get("status"),
        "stage": task.get("stage"),
        "progress": task.get("progress"),
        "videoUrl": task.get("video_url"),
        "error": task.get("error"),
    }


async def refresh_render_task(task_id: str, shop: Optional[str] = None) -> dict:
    """
    Poll Remotion once for a pending task and mirror the result.

    On completion the scene gets the rendered video and becomes ready.
    Returns {id, status, stage, progress, videoUrl, error}.
    """
    task = get_task(task_id, shop)
    if task.get("status") != TaskStatus.PENDING.value:
        return _task_view(task)

    status = await remotion.fetch_task_status(task["remotion_task_id"])
    if status is None:
        return _task_view(task)

    logger.info(
        f"Remotion task {task['remotion_task_id']} → status={status['status']} "
        f"stage={status['stage'] or '-'} progress={status['progress']}"
    )
    updates = {"status": status["status"], "progress": status["progress"]}
    if status["stage"]:
        updates["stage"] = status["stage"]
    if status["status"] == TaskStatus.COMPLETED.value and status["videoUrl"]:
        updates["video_url"] = status["videoUrl"]
    if status["status"] == TaskStatus.FAILED.value and status["error"]:
        updates["error"] = status["error"]

    update_task(task_id, **updates)
    task = {**task, **updates}

    if status["status"] == TaskStatus.COMPLETED.value and status["videoUrl"] and task.get("video_scene_id"):
        update_scene(
            task["video_scene_id"],
            generated_video_url=status["videoUrl"],
            status=SceneStatus.READY.value,
        )
        logger.info(f"Scene {task['video_scene_id']} ready: {status['videoUrl']}")

    return _task_view(task)


# ═════════════════════════════════════════════════════════════════════════════
# D. Audio
# ═════════════════════════════════════════════════════════════════════════════

def get_audio_info(short_id: str) -> Optional[dict]:
    sb = get_client()
    return first_row(sb.table("audio_info").select("*").eq("short_id", short_id).limit(1).execute())


def _upsert_audio(short_id: str, fields: dict, create_defaults: dict):
    """Update only the provided (non-None) fields; create the row when missing."""
    sb = get_client()
    provided = {key: value for key, value in fields.items() if value is not None}
    existing = get_audio_info(short_id)
    if existing:
        sb.table("audio_info").update({**provided, "updated_at": now_iso()}).eq("short_id", short_id).execute()
    else:
        sb.table("audio_info").insert({
            "id": str(uuid4()),
            "short_id": short_id,
            **create_defaults,
            **provided,
            "created_at": now_iso(),
            "updated_at": now_iso(),
        }).execute()


def _clean(value: Optional[str]) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def save_audio_script(
    short_id: str,
    audio_script: Optional[str],
    voice_id: Optional[str] = None,
    voice_name: Optional[str] = None,
    shop: Optional[str] = None,
):
    get_short(short_id, shop)
    _upsert_audio(
        short_id,
        {
            "audio_script": audio_script if isinstance(audio_script, str) else None,
            "voice_id": _clean(voice_id),
            "voice_name": _clean(voice_name),
        },
        create_defaults={"status": "draft"},
    )


def save_audio(
    short_id: str,
    generated_audio_url: Optional[str],
    subtitles: Any = None,
    voice_id: Optional[str] = None,
    voice_name: Optional[str] = None,
    shop: Optional[str] = None,
):
    get_short(short_id, shop)
    _upsert_audio(
        short_id,
        {
            "generated_audio_url": _clean(generated_audio_url),
            "subtitles": subtitles,
            "voice_id": _clean(voice_id),
            "voice_name": _clean(voice_name),
            "status": "ready",
        },
        create_defaults={},
    )


# ═════════════════════════════════════════════════════════════════════════════
# E. Finished videos
# ═════════════════════════════════════════════════════════════════════════════

def _ready_shorts(shop: str) -> list[dict]:
    sb = get_client()
    result = (
        sb.table("shorts")
        .select("*")
        .eq("user_id", shop)
        .eq("status", ShortStatus.READY.value)
        .order("created_at", desc=True)
        .execute()
    )
    return [row for row in result.data or [] if (row.get("final_video_url") or "").strip()]


def list_ready_videos(shop: str, product_id: Optional[str] = None) -> dict:
    """
    Finished videos for the shop, newest first, plus product filter options.

    The thumbnail is the final video, else the first scene's render, else the
    first scene's image.
    """
    product_id = product_id.strip() if product_id and product_id.strip() else None
    ready = _ready_shorts(shop)

    videos = []
    for short in ready:
        if product_id and short.get("product_id") != product_id:
            continue
        scenes = list_scenes(short["id"])
        first = scenes[0] if scenes else {}
        thumbnail = (
            (short.get("final_video_url") or "").strip()
            or (first.get("generated_video_url") or "").strip()
            or (first.get("image_url") or "").strip()
            or None
        )
        videos.append({
            "id": short["id"],
            "title": short.get("title"),
            "productId": short.get("product_id"),
            "finalVideoUrl": short["final_video_url"].strip(),
            "createdAt": short.get("created_at"),
            "thumbnailUrl": thumbnail,
        })

    options, seen = [], set()
    for short in ready:
        pid = short.get("product_id")
        if pid and pid not in seen:
            seen.add(pid)
            options.append({"productId": pid, "title": short.get("title") or "Untitled"})

    return {"videos": videos, "productFilterOptions": options, "currentProductId": product_id}
