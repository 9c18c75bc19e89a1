"""
FastAPI routes for Shorts persistence and the promo video workflow.

Shorts Endpoints (/api):
  POST /api/shorts                    — create a draft Short
  GET  /api/shorts                    — finished videos (?productId= filter)
  POST /api/shorts/scenes             — ensure a scene row exists
  POST /api/shorts/reset              — reset Short + scenes
  POST /api/shorts/save-bg-music      — store background music choice
  POST /api/shorts/save-final-video   — store the final video URL
  POST /api/audio/save-script         — store the voice-over script
  POST /api/audio/save                — store the generated voice-over
  GET|POST|DELETE /api/promo-workflow-temp
  GET  /api/legal/status
  POST /api/legal/agree

Workflow Endpoints (/workflow):
  POST /workflow/shorts                             — create Short + scenes
  POST /workflow/shorts/{id}/scenes/{n}             — build scene n (async job)
  POST /workflow/shorts/{id}/scenes/{n}/regenerate  — clear and rebuild scene n
  POST /workflow/shorts/{id}/audio                  — script + voice-over
  POST /workflow/shorts/{id}/music                  — select background music
  POST /workflow/shorts/{id}/finalize               — final merge (async job)
  GET  /workflow/shorts/{id}                        — restore snapshot
  POST /workflow/shorts/{id}/reset                  — start from scratch
  POST /workflow/shorts/{id}/done                   — finish, clear saved state
  GET  /workflow/jobs/{job_id}                      — job status
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..auth_middleware import require_shop
from ..http_errors import enforce_rate_limit, to_http_exception
from . import legal_service, short_service, workflow_temp
from .models import (
    AudioRunRequest,
    CreateShortRequest,
    EnsureSceneRequest,
    MusicSelectRequest,
    ResetShortRequest,
    SaveAudioRequest,
    SaveBgMusicRequest,
    SaveFinalVideoRequest,
    SaveScriptRequest,
    SceneRunRequest,
    WorkflowJobResponse,
    WorkflowStartRequest,
    WorkflowTempRequest,
)
from .orchestrator import PromoWorkflowService

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Shorts Router: persistence used by the wizard UI
# ═════════════════════════════════════════════════════════════════════════════

shorts_router = APIRouter(prefix="/api", tags=["shorts"])


@shorts_router.post("/shorts")
async def create_short(request: CreateShortRequest, shop: str = Depends(require_shop)):
    try:
        created = short_service.create_short(shop, request.title, request.productId)
        return {"shortId": created["shortId"]}
    except Exception as e:
        raise to_http_exception(e, "create short")


@shorts_router.get("/shorts")
async def list_videos(productId: Optional[str] = None, shop: str = Depends(require_shop)):
    """Finished videos for the shop, newest first."""
    try:
        return short_service.list_ready_videos(shop, productId)
    except Exception as e:
        raise to_http_exception(e, "list videos")


@shorts_router.post("/shorts/scenes")
async def ensure_scene(request: EnsureSceneRequest, shop: str = Depends(require_shop)):
    short_id = request.shortId.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="shortId required")
    if request.sceneNumber not in (1, 2, 3):
        raise HTTPException(status_code=400, detail="sceneNumber must be 1, 2, or 3")
    try:
        short_service.get_short(short_id, shop)
        scene_id, created = short_service.ensure_scene(short_id, request.sceneNumber)
        return {"sceneId": scene_id, "created": created}
    except Exception as e:
        raise to_http_exception(e, "ensure scene")


@shorts_router.post("/shorts/reset")
async def reset_short(request: ResetShortRequest, shop: str = Depends(require_shop)):
    short_id = request.shortId.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="shortId required")
    try:
        short_service.reset_short(short_id, shop)
        return {"ok": True}
    except Exception as e:
        raise to_http_exception(e, "reset short")


@shorts_router.post("/shorts/save-bg-music")
async def save_bg_music(request: SaveBgMusicRequest, shop: str = Depends(require_shop)):
    short_id = request.short_id.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="short_id is required")
    try:
        payload = short_service.save_bg_music(short_id, request.bg_music, shop)
        return {"success": True, "bgMusic": payload}
    except Exception as e:
        raise to_http_exception(e, "save bg music")


@shorts_router.post("/shorts/save-final-video")
async def save_final_video(request: SaveFinalVideoRequest, shop: str = Depends(require_shop)):
    short_id = request.short_id.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="short_id is required")
    try:
        url = short_service.save_final_video(short_id, request.final_video_url, shop)
        return {"success": True, "final_video_url": url}
    except Exception as e:
        raise to_http_exception(e, "save final video")


@shorts_router.post("/audio/save-script")
async def save_script(request: SaveScriptRequest, shop: str = Depends(require_shop)):
    short_id = request.short_id.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="short_id is required")
    try:
        short_service.save_audio_script(
            short_id, request.audio_script, request.voice_id, request.voice_name, shop,
        )
        return {"success": True, "message": "Script saved"}
    except Exception as e:
        raise to_http_exception(e, "save script")


@shorts_router.post("/audio/save")
async def save_audio(request: SaveAudioRequest, shop: str = Depends(require_shop)):
    short_id = request.short_id.strip()
    if not short_id:
        raise HTTPException(status_code=400, detail="short_id is required")
    try:
        short_service.save_audio(
            short_id, request.generated_audio_url, request.subtitles,
            request.voice_id, request.voice_name, shop,
        )
        return {"success": True, "message": "Audio saved"}
    except Exception as e:
        raise to_http_exception(e, "save audio")


# ── Workflow temp state ──────────────────────────────────────────────────────

@shorts_router.get("/promo-workflow-temp")
async def get_workflow_temp(productId: str = "", shop: str = Depends(require_shop)):
    if not productId.strip():
        raise HTTPException(status_code=400, detail="productId required")
    try:
        return {"state": workflow_temp.get_workflow_temp(shop, productId.strip())}
    except Exception as e:
        raise to_http_exception(e, "get workflow temp")


@shorts_router.post("/promo-workflow-temp")
async def save_workflow_temp(
    request: WorkflowTempRequest,
    productId: str = "",
    shop: str = Depends(require_shop),
):
    product_id = request.productId.strip() or productId.strip()
    if not product_id:
        raise HTTPException(status_code=400, detail="productId required")
    if not request.state:
        raise HTTPException(status_code=400, detail="state required")
    try:
        workflow_temp.save_workflow_temp(shop, product_id, request.state)
        return {"ok": True}
    except Exception as e:
        raise to_http_exception(e, "save workflow temp")


@shorts_router.delete("/promo-workflow-temp")
async def delete_workflow_temp(productId: str = "", shop: str = Depends(require_shop)):
    if not productId.strip():
        raise HTTPException(status_code=400, detail="productId required")
    try:
        workflow_temp.delete_workflow_temp(shop, productId.strip())
        return {"ok": True}
    except Exception as e:
        raise to_http_exception(e, "delete workflow temp")


# ── Legal ────────────────────────────────────────────────────────────────────

@shorts_router.get("/legal/status")
async def legal_status(shop: str = Depends(require_shop)):
    try:
        return legal_service.get_legal_status(shop)
    except Exception as e:
        raise to_http_exception(e, "legal status")


@shorts_router.post("/legal/agree")
async def legal_agree(shop: str = Depends(require_shop)):
    try:
        legal_service.record_legal_agreement(shop)
        return {"success": True, "termsVersion": legal_service.TERMS_VERSION}
    except Exception as e:
        raise to_http_exception(e, "legal agree")


# ═════════════════════════════════════════════════════════════════════════════
# Workflow Router: server-side wizard
# ═════════════════════════════════════════════════════════════════════════════

workflow_router = APIRouter(prefix="/workflow", tags=["workflow"])

# Singleton service instance
_service = PromoWorkflowService()


@workflow_router.post("/shorts")
async def start_workflow(request: WorkflowStartRequest, shop: str = Depends(require_shop)):
    try:
        return _service.create_short(shop, request.product_id, request.title)
    except Exception as e:
        raise to_http_exception(e, "create workflow short")


@workflow_router.post("/shorts/{short_id}/scenes/{scene_number}", response_model=WorkflowJobResponse)
async def run_scene(
    short_id: str,
    scene_number: int,
    request: SceneRunRequest,
    shop: str = Depends(require_shop),
):
    """Build one scene in the background; poll /workflow/jobs/{job_id}."""
    enforce_rate_limit(shop, "scene")
    try:
        return await _service.start_scene(shop, short_id, scene_number, request)
    except Exception as e:
        raise to_http_exception(e, "start scene")


@workflow_router.post("/shorts/{short_id}/scenes/{scene_number}/regenerate", response_model=WorkflowJobResponse)
async def regenerate_scene(
    short_id: str,
    scene_number: int,
    request: SceneRunRequest,
    shop: str = Depends(require_shop),
):
    enforce_rate_limit(shop, "scene")
    try:
        return await _service.regenerate_scene(shop, short_id, scene_number, request)
    except Exception as e:
        raise to_http_exception(e, "regenerate scene")


@workflow_router.post("/shorts/{short_id}/audio")
async def run_audio(short_id: str, request: AudioRunRequest, shop: str = Depends(require_shop)):
    enforce_rate_limit(shop, "audio_generate")
    try:
        return await _service.run_audio(
            shop, short_id, request.voice_id, request.voice_name,
            request.product_description, request.script,
        )
    except Exception as e:
        raise to_http_exception(e, "workflow audio")


@workflow_router.post("/shorts/{short_id}/music")
async def select_music(short_id: str, request: MusicSelectRequest, shop: str = Depends(require_shop)):
    try:
        return {"success": True, "bgMusic": _service.select_music(shop, short_id, request.track)}
    except Exception as e:
        raise to_http_exception(e, "select music")


@workflow_router.post("/shorts/{short_id}/finalize", response_model=WorkflowJobResponse)
async def finalize(short_id: str, shop: str = Depends(require_shop)):
    enforce_rate_limit(shop, "finalize")
    try:
        return await _service.start_finalize(shop, short_id)
    except Exception as e:
        raise to_http_exception(e, "workflow finalize")


@workflow_router.get("/shorts/{short_id}")
async def restore(short_id: str, shop: str = Depends(require_shop)):
    """Snapshot for resuming the wizard where the merchant left off."""
    try:
        return _service.restore(shop, short_id)
    except Exception as e:
        raise to_http_exception(e, "restore")


@workflow_router.post("/shorts/{short_id}/reset")
async def reset(short_id: str, shop: str = Depends(require_shop)):
    try:
        return _service.reset(shop, short_id)
    except Exception as e:
        raise to_http_exception(e, "workflow reset")


@workflow_router.post("/shorts/{short_id}/done")
async def done(short_id: str, shop: str = Depends(require_shop)):
    try:
        return _service.complete(shop, short_id)
    except Exception as e:
        raise to_http_exception(e, "workflow done")


@workflow_router.get("/jobs/{job_id}", response_model=WorkflowJobResponse)
async def job_status(job_id: str, shop: str = Depends(require_shop)):
    try:
        return _service.get_status(job_id, shop)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
