"""
Pydantic models and enums for the promo video workflow.
"""

import math
from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, Field


# ── Workflow Step ────────────────────────────────────────────────────────────

class WorkflowStep(str, Enum):
    QUEUED = "QUEUED"
    REMOVING_BG = "REMOVING_BG"
    BACKGROUND = "BACKGROUND"
    COMPOSITING = "COMPOSITING"
    RENDERING = "RENDERING"
    MERGING = "MERGING"
    AUDIO_SCRIPT = "AUDIO_SCRIPT"
    AUDIO_VOICE = "AUDIO_VOICE"
    FINALIZING = "FINALIZING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ── Persisted statuses ───────────────────────────────────────────────────────

class ShortStatus(str, Enum):
    DRAFT = "draft"
    FINALIZING = "finalizing"
    READY = "ready"


class SceneStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    READY = "ready"
    FAILED = "failed"


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


SCENE_NUMBERS = (1, 2, 3)
VIDEO_SCENE_NUMBER = 2
DEFAULT_SCENE_DURATION = 8
DEFAULT_SHORT_TITLE = "Promo video"

# Columns cleared when a scene is regenerated
SCENE_ASSET_FIELDS = (
    "image_url",
    "bg_removed_url",
    "background_url",
    "composited_url",
    "generated_video_url",
)


# ── Background music ─────────────────────────────────────────────────────────

def _blank_to_none(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _pick(track: dict, *keys: str) -> Optional[str]:
    """First key holding a string; blank strings become None."""
    for key in keys:
        if isinstance(track.get(key), str):
            return _blank_to_none(track[key])
    return None


class BgMusic(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    genre: Optional[str] = "Storyblocks"
    duration: Optional[float] = None
    previewUrl: Optional[str] = None
    downloadUrl: Optional[str] = None

    @classmethod
    def from_track(cls, track: dict) -> "BgMusic":
        """Accept the stored shape as well as raw Storyblocks / local tracks."""
        duration = track.get("duration", track.get("duration_seconds"))
        if isinstance(duration, bool) or not isinstance(duration, (int, float)) or not math.isfinite(duration):
            duration = None

        return cls(
            id=_pick(track, "id"),
            name=_pick(track, "name", "title"),
            genre=_pick(track, "genre") if isinstance(track.get("genre"), str) else "Storyblocks",
            duration=duration,
            previewUrl=_pick(track, "previewUrl", "preview_url"),
            downloadUrl=_pick(track, "downloadUrl", "preview_url", "previewUrl"),
        )


class ProductInfo(BaseModel):
    name: str = "Product"
    price: str = "$0.00"
    rating: float = 0


# ── Proxy API request models ─────────────────────────────────────────────────

class RemoveBgRequest(BaseModel):
    step: Optional[str] = None
    imageUrl: Optional[str] = None


class ExtractPromptRequest(BaseModel):
    product_description: str = ""
    mood: Optional[str] = None
    style: Optional[str] = None
    environment: Optional[str] = None


class BackgroundGenerateRequest(BaseModel):
    product_description: str = ""
    user_id: str = ""
    scene_id: Optional[str] = None
    short_id: Optional[str] = None
    manual_prompt: Optional[str] = None
    mood: Optional[str] = None
    style: Optional[str] = None
    environment: Optional[str] = None


class CompositeRequest(BaseModel):
    background_url: str = ""
    overlay_url: str = ""
    scene_id: Optional[str] = None
    user_id: Optional[str] = None


class MergeVideoRequest(BaseModel):
    product_image_url: str = ""
    background_video_url: str = ""
    scene_id: str = ""
    user_id: str = ""
    duration: Optional[float] = None


class RemotionStartRequest(BaseModel):
    shortId: str = ""
    sceneId: Optional[str] = None
    imageUrl: str = ""
    template: Optional[str] = None
    product: Optional[dict] = None


class GenerateScriptRequest(BaseModel):
    voice_id: str = ""
    user_id: str = ""
    short_id: str = ""
    productDescription: str = ""


class GenerateAudioRequest(BaseModel):
    voice_id: str = ""
    user_id: str = ""
    short_id: str = ""
    script: str = ""


class SaveScriptRequest(BaseModel):
    short_id: str = ""
    audio_script: Optional[str] = None
    voice_id: Optional[str] = None
    voice_name: Optional[str] = None


class SaveAudioRequest(BaseModel):
    short_id: str = ""
    generated_audio_url: Optional[str] = None
    subtitles: Optional[Any] = None
    voice_id: Optional[str] = None
    voice_name: Optional[str] = None


class CreateShortRequest(BaseModel):
    title: Optional[str] = None
    productId: Optional[str] = None


class EnsureSceneRequest(BaseModel):
    shortId: str = ""
    sceneNumber: Optional[int] = None


class ResetShortRequest(BaseModel):
    shortId: str = ""


class SaveBgMusicRequest(BaseModel):
    short_id: str = ""
    bg_music: Optional[dict] = None


class SaveFinalVideoRequest(BaseModel):
    short_id: str = ""
    final_video_url: Optional[str] = None


class FinalizeRequest(BaseModel):
    short_id: str = ""


class WorkflowTempRequest(BaseModel):
    productId: str = ""
    state: dict = Field(default_factory=dict)


# ── Workflow request models ──────────────────────────────────────────────────

class WorkflowStartRequest(BaseModel):
    """Create a Short (and its three scenes) for a product."""
    product_id: Optional[str] = None
    title: Optional[str] = None


class SceneRunRequest(BaseModel):
    """
    Inputs for one scene.

    Scenes 1 and 3: background_source "generate" (AI background, optional
    manual_prompt) or "url" (stock image or any image URL in background_url).
    Scene 2: background_url is the stock video to merge onto.
    """
    image_url: str
    background_source: str = Field("generate", pattern="^(generate|url)$")
    background_url: Optional[str] = None
    manual_prompt: Optional[str] = None
    product_description: str = ""
    mood: Optional[str] = None
    style: Optional[str] = None
    environment: Optional[str] = None
    product: ProductInfo = Field(default_factory=ProductInfo)


class AudioRunRequest(BaseModel):
    voice_id: str
    voice_name: Optional[str] = None
    product_description: str = ""
    script: Optional[str] = Field(None, description="Skip script generation and speak this text")


class MusicSelectRequest(BaseModel):
    track: Optional[dict] = Field(None, description="Storyblocks or local track; null clears")


# ── Responses ────────────────────────────────────────────────────────────────

class WorkflowJobResponse(BaseModel):
    job_id: str
    short_id: Optional[str] = None
    status: WorkflowStep
    current_step: str = ""
    progress_pct: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None
