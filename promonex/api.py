"""
Proxy routes the embedded app's UI calls directly.

Vendor Endpoints:
  POST /api/video                           — removeBg step (PhotoRoom)
  GET  /api/stock/images                    — Pexels + Pixabay photos
  GET  /api/stock/videos                    — Pexels + Pixabay + Coverr videos
  POST /api/background/extract-prompt       — description → background prompt
  POST /api/background/generate             — start AI background generation
  GET  /api/background/status/{task_id}     — background generation status
  POST /api/image/composite                 — composite cut-out on background
  POST /api/image/merge-video               — start cut-out → stock video merge
  GET  /api/image/merge-video/{task_id}     — merge-video status
  POST /api/remotion/start                  — start a scene render
  GET  /api/tasks/{task_id}                 — render task status (polled)
  GET  /api/audio/config | voices
  POST /api/audio/generate-script | generate
  GET  /api/music/local                     — local music library
  GET  /api/storyblocks/music               — Storyblocks music search
  POST /api/merge/finalize                  — start the final merge
  GET  /api/merge/status/{task_id}          — final merge status (no-store)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from . import audio, backend, metrics, music_library, photoroom, remotion, stock, storyblocks
from .auth_middleware import require_shop
from .http_errors import enforce_rate_limit, to_http_exception
from .pipeline import short_service
from .pipeline.models import (
    BackgroundGenerateRequest,
    CompositeRequest,
    ExtractPromptRequest,
    FinalizeRequest,
    GenerateAudioRequest,
    GenerateScriptRequest,
    MergeVideoRequest,
    ProductInfo,
    RemotionStartRequest,
    RemoveBgRequest,
)

logger = logging.getLogger(__name__)

NO_STORE_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate", "Pragma": "no-cache"}

api_router = APIRouter(prefix="/api", tags=["api"])


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, value))


# ═════════════════════════════════════════════════════════════════════════════
# Background removal & stock media
# ═════════════════════════════════════════════════════════════════════════════

@api_router.post("/video")
async def video_step(request: RemoveBgRequest, shop: str = Depends(require_shop)):
    """Step dispatcher; only "removeBg" exists."""
    if request.step != "removeBg":
        raise HTTPException(status_code=400, detail=f"Unknown step: {request.step}")
    if not (request.imageUrl or "").strip():
        raise HTTPException(status_code=400, detail="Missing or invalid imageUrl")

    enforce_rate_limit(shop, "remove_bg")
    try:
        url = await photoroom.remove_background(request.imageUrl.strip())
        return {"ok": True, "url": url}
    except Exception as e:
        raise to_http_exception(e, "removeBackground")


@api_router.get("/stock/images")
async def stock_images(query: str = "", page: int = 1, per_page: int = 12, shop: str = Depends(require_shop)):
    if not query.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")
    return await stock.search_stock_images(query.strip(), max(1, page), _clamp(per_page, 1, stock.MAX_PER_PAGE))


@api_router.get("/stock/videos")
async def stock_videos(query: str = "", page: int = 1, per_page: int = 12, shop: str = Depends(require_shop)):
    if not query.strip():
        raise HTTPException(status_code=400, detail="Query parameter is required")
    return await stock.search_stock_videos(query.strip(), max(1, page), _clamp(per_page, 1, stock.MAX_PER_PAGE))


# ═════════════════════════════════════════════════════════════════════════════
# Backgrounds, compositing, merge-video
# ═════════════════════════════════════════════════════════════════════════════

@api_router.post("/background/extract-prompt")
async def extract_prompt(request: ExtractPromptRequest, shop: str = Depends(require_shop)):
    if not request.product_description.strip():
        raise HTTPException(status_code=400, detail="product_description is required")
    try:
        prompt = await backend.extract_background_prompt(
            request.product_description,
            mood=request.mood,
            style=request.style,
            environment=request.environment,
        )
        return {"success": True, "prompt": prompt, "error": None}
    except Exception as e:
        raise to_http_exception(e, "extract-prompt")


@api_router.post("/background/generate")
async def generate_background(request: BackgroundGenerateRequest, shop: str = Depends(require_shop)):
    enforce_rate_limit(shop, "background_generate")
    try:
        task_id = await backend.start_background_generation(
            request.product_description,
            user_id=request.user_id.strip() or shop,
            scene_id=request.scene_id,
            short_id=request.short_id,
            manual_prompt=request.manual_prompt,
            mood=request.mood,
            style=request.style,
            environment=request.environment,
        )
        return {"ok": True, "task_id": task_id}
    except Exception as e:
        raise to_http_exception(e, "background generate")


@api_router.get("/background/status/{task_id}")
async def background_status(task_id: str, shop: str = Depends(require_shop)):
    result = await backend.get_background_generation_status(task_id.strip())
    if result is None:
        raise HTTPException(status_code=502, detail="Status unavailable")
    return result


@api_router.post("/image/composite")
async def composite(request: CompositeRequest, shop: str = Depends(require_shop)):
    if not request.background_url.strip():
        raise HTTPException(status_code=400, detail="Missing or invalid background_url")
    if not request.overlay_url.strip():
        raise HTTPException(status_code=400, detail="Missing or invalid overlay_url")
    try:
        return await backend.composite_images(
            request.background_url.strip(),
            request.overlay_url.strip(),
            request.scene_id or "scene-adhoc",
            request.user_id or shop,
        )
    except Exception as e:
        raise to_http_exception(e, "composite")


@api_router.post("/image/merge-video")
async def merge_video(request: MergeVideoRequest, shop: str = Depends(require_shop)):
    if not request.product_image_url.strip() or not request.background_video_url.strip():
        raise HTTPException(status_code=400, detail="product_image_url and background_video_url are required")
    try:
        return await backend.merge_video_start(
            request.product_image_url.strip(),
            request.background_video_url.strip(),
            request.scene_id.strip() or "scene-2",
            request.user_id.strip() or shop,
            duration=request.duration,
        )
    except Exception as e:
        raise to_http_exception(e, "merge-video start")


@api_router.get("/image/merge-video/{task_id}")
async def merge_video_status(task_id: str, shop: str = Depends(require_shop)):
    result = await backend.merge_video_status(task_id.strip())
    if result is None:
        raise HTTPException(status_code=502, detail="Status unavailable")
    return JSONResponse(result, headers=NO_STORE_HEADERS)


# ═════════════════════════════════════════════════════════════════════════════
# Remotion renders
# ═════════════════════════════════════════════════════════════════════════════

@api_router.post("/remotion/start")
async def remotion_start(request: RemotionStartRequest, shop: str = Depends(require_shop)):
    """Start a render and record a Task the UI polls through /api/tasks/{id}."""
    short_id = request.shortId.strip()
    image_url = request.imageUrl.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="shortId required")
    if not image_url:
        raise HTTPException(status_code=400, detail="imageUrl required")

    scene_id = (request.sceneId or "").strip() or None
    try:
        short_service.get_short(short_id, shop)
        if scene_id:
            short_service.get_scene_for_short(scene_id, short_id)
    except Exception as e:
        raise to_http_exception(e, "remotion start")

    template = (request.template or "").strip() or remotion.DEFAULT_TEMPLATE
    raw = request.product or {}
    product = ProductInfo(
        name=raw["name"].strip() if isinstance(raw.get("name"), str) else "Product",
        price=raw["price"] if isinstance(raw.get("price"), str) else "$0.00",
        rating=raw["rating"] if isinstance(raw.get("rating"), (int, float)) else 0,
    ).model_dump()

    enforce_rate_limit(shop, "render")
    try:
        remotion_task_id = await remotion.start_shopify_video(template, image_url, product, shop, short_id)
    except Exception as e:
        raise to_http_exception(e, "remotion start")

    try:
        task = short_service.create_render_task(
            remotion_task_id, short_id, scene_id, template, product, image_url,
        )
        return {"taskId": task["id"], "remotionTaskId": remotion_task_id, "status": "pending"}
    except Exception as e:
        raise to_http_exception(e, "task create")


@api_router.get("/tasks/{task_id}")
async def task_status(task_id: str, shop: str = Depends(require_shop)):
    try:
        return await short_service.refresh_render_task(task_id.strip(), shop)
    except Exception as e:
        raise to_http_exception(e, "task status")


# ═════════════════════════════════════════════════════════════════════════════
# Audio & music
# ═════════════════════════════════════════════════════════════════════════════

@api_router.get("/audio/config")
async def audio_config(shop: str = Depends(require_shop)):
    return audio.audio_config()


@api_router.get("/audio/voices")
async def audio_voices(shop: str = Depends(require_shop)):
    try:
        return {"success": True, "voices": await audio.get_voices()}
    except Exception as e:
        raise to_http_exception(e, "voices")


@api_router.post("/audio/generate-script")
async def audio_generate_script(request: GenerateScriptRequest, shop: str = Depends(require_shop)):
    user_id = request.user_id.strip() or shop
    if not request.voice_id.strip() or not request.short_id.strip():
        raise HTTPException(status_code=400, detail="voice_id, user_id, and short_id are required")
    try:
        return await audio.generate_script(
            request.voice_id.strip(), user_id, request.short_id.strip(), request.productDescription,
        )
    except Exception as e:
        raise to_http_exception(e, "generate-script")


@api_router.post("/audio/generate")
async def audio_generate(request: GenerateAudioRequest, shop: str = Depends(require_shop)):
    user_id = request.user_id.strip() or shop
    if not request.voice_id.strip() or not request.short_id.strip() or not request.script.strip():
        raise HTTPException(status_code=400, detail="voice_id, user_id, short_id and script are required")

    enforce_rate_limit(shop, "audio_generate")
    try:
        return await audio.generate_audio(
            request.voice_id.strip(), user_id, request.short_id.strip(), request.script,
        )
    except Exception as e:
        raise to_http_exception(e, "generate audio")


@api_router.get("/music/local")
async def music_local(shop: str = Depends(require_shop)):
    try:
        return {"success": True, "tracks": music_library.list_local_tracks()}
    except OSError as e:
        logger.error(f"Local music listing failed: {e}", exc_info=True)
        return JSONResponse({"success": False, "tracks": [], "error": str(e)}, status_code=500)


@api_router.get("/storyblocks/music")
async def storyblocks_music(
    query: str = "",
    page: int = 1,
    per_page: int = 12,
    shop: str = Depends(require_shop),
):
    try:
        return await storyblocks.search_music(
            query.strip() or "corporate upbeat",
            max(1, page),
            _clamp(per_page, 1, storyblocks.MAX_RESULTS),
        )
    except Exception as e:
        raise to_http_exception(e, "storyblocks")


# ═════════════════════════════════════════════════════════════════════════════
# Final merge
# ═════════════════════════════════════════════════════════════════════════════

@api_router.post("/merge/finalize")
async def merge_finalize(request: FinalizeRequest, shop: str = Depends(require_shop)):
    """Start the final merge; a backend failure puts the Short back to draft."""
    short_id = request.short_id.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="short_id is required")

    try:
        short = short_service.get_short(short_id, shop)
    except Exception as e:
        raise to_http_exception(e, "finalize")

    enforce_rate_limit(shop, "finalize")
    short_service.mark_finalizing(short_id)
    try:
        result = await backend.finalize_short_start(short["user_id"], short_id)
    except Exception as e:
        short_service.mark_draft(short_id)
        logger.warning(f"Finalize start failed for short {short_id}: {e}")
        metrics.record_error("finalize", type(e).__name__, str(e), shop)
        raise HTTPException(status_code=400, detail=str(e))
    return result


@api_router.get("/merge/status/{task_id}")
async def merge_status(task_id: str, shop: str = Depends(require_shop)):
    result = await backend.finalize_short_status(task_id.strip())
    if result is None:
        raise HTTPException(status_code=502, detail="Status unavailable")
    return JSONResponse(result, headers=NO_STORE_HEADERS)
