"""
PromoWorkflowService: the server-side "Create promo video" wizard.

Chains the steps with job status tracking, full asyncio support:
  Scenes 1-3: remove background → background → composite / merge → render
  Audio:      script (ElevenLabs voice pacing) → voice-over
  Music:      background track selection
  Finalize:   merge scenes + audio + music → final video

Scene and finalize runs are background jobs bounded by the concurrent job
guard; their progress is read through get_status(job_id).
"""

import uuid
import asyncio
import logging
from typing import Optional

from .. import audio, backend, metrics, rate_limiter
from ..rate_limiter import CapacityError
from . import scenes, short_service, workflow_temp
from .models import (
    SceneRunRequest,
    SceneStatus,
    WorkflowJobResponse,
    WorkflowStep,
    SCENE_NUMBERS,
)
from .polling import poll_until

logger = logging.getLogger(__name__)


class PromoWorkflowService:
    """
    Usage:
        service = PromoWorkflowService()

        created = service.create_short(shop, product_id)
        job = await service.start_scene(shop, short_id, 1, request)
        service.get_status(job.job_id)
        ...
        await service.run_audio(shop, short_id, voice_id)
        job = await service.start_finalize(shop, short_id)
    """

    def __init__(self):
        self._jobs: dict[str, WorkflowJobResponse] = {}
        self._running: dict[tuple[str, str], str] = {}  # (short_id, unit) → job_id
        self._tasks: set[asyncio.Task] = set()
        self._job_shops: dict[str, str] = {}  # job_id → shop that started it

    def get_status(self, job_id: str, shop: Optional[str] = None) -> WorkflowJobResponse:
        """Get the current status of a workflow job; other shops' jobs are not found."""
        job = self._jobs.get(job_id)
        if job is None or (shop is not None and self._job_shops.get(job_id) != shop):
            raise LookupError("Job not found")
        return job

    def _update_status(
        self,
        job_id: str,
        short_id: str,
        status: WorkflowStep,
        step: str = "",
        progress: int = 0,
        result_url: Optional[str] = None,
        error: Optional[str] = None,
    ):
        self._jobs[job_id] = WorkflowJobResponse(
            job_id=job_id,
            short_id=short_id,
            status=status,
            current_step=step,
            progress_pct=progress,
            result_url=result_url,
            error=error,
        )
        logger.info(f"[{job_id}] {status.value} → {step} ({progress}%)")

    def _reporter(self, job_id: str, short_id: str):
        def report(status: WorkflowStep, step: str, progress: int):
            self._update_status(job_id, short_id, status, step, progress)
        return report

    def _active_jobs_for(self, short_id: str) -> dict[str, str]:
        return {unit: job_id for (sid, unit), job_id in self._running.items() if sid == short_id}

    def _check_not_finalizing(self, short_id: str):
        if (short_id, "finalize") in self._running:
            raise ValueError("Final merge is running; wait for it to finish")

    async def _spawn(self, short_id: str, unit: str, job_id: str, coro):
        """Run a job in the background holding a job slot and the (short, unit) lock."""
        key = (short_id, unit)
        if key in self._running:
            coro.close()
            raise ValueError(f"{unit} is already running (job {self._running[key]})")
        if not rate_limiter.acquire_job_slot():
            coro.close()
            raise CapacityError(
                f"Server at capacity ({rate_limiter.MAX_CONCURRENT_JOBS} concurrent jobs). Try again shortly."
            )

        self._running[key] = job_id
        metrics.set_gauge("active_jobs", rate_limiter.get_active_jobs())

        async def _run_and_release():
            try:
                await coro
            finally:
                self._running.pop(key, None)
                rate_limiter.release_job_slot()
                metrics.set_gauge("active_jobs", rate_limiter.get_active_jobs())

        task = asyncio.create_task(_run_and_release())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ── Short ────────────────────────────────────────────────────────────

    def create_short(self, shop: str, product_id: Optional[str] = None, title: Optional[str] = None) -> dict:
        """Create a draft Short with its three pending scenes."""
        return short_service.create_short(shop, title, product_id, with_scenes=True)

    # ── Scenes ───────────────────────────────────────────────────────────

    async def run_scene(
        self,
        job_id: str,
        shop: str,
        short_id: str,
        scene_number: int,
        request: SceneRunRequest,
    ) -> WorkflowJobResponse:
        """Build one scene; the job ends COMPLETED with the scene video or FAILED."""
        self._job_shops[job_id] = shop
        try:
            self._update_status(job_id, short_id, WorkflowStep.QUEUED, f"Scene {scene_number} started", 5)
            video_url = await scenes.run_scene(
                shop, short_id, scene_number, request, self._reporter(job_id, short_id),
            )
            self._update_status(
                job_id, short_id, WorkflowStep.COMPLETED,
                f"Scene {scene_number} ready", 100, result_url=video_url,
            )
            metrics.inc_counter("workflow.scene_completed")
        except Exception as e:
            logger.error(f"Scene {scene_number} failed for short {short_id}: {e}", exc_info=True)
            metrics.record_error("workflow", type(e).__name__, str(e), shop)
            self._update_status(job_id, short_id, WorkflowStep.FAILED, f"Scene {scene_number} failed", error=str(e))
        return self.get_status(job_id)

    async def start_scene(
        self,
        shop: str,
        short_id: str,
        scene_number: int,
        request: SceneRunRequest,
    ) -> WorkflowJobResponse:
        """Validate, then run the scene as a background job."""
        if scene_number not in SCENE_NUMBERS:
            raise ValueError("sceneNumber must be 1, 2, or 3")
        short_service.get_short(short_id, shop)
        self._check_not_finalizing(short_id)
        short_service.ensure_scene(short_id, scene_number)

        job_id = str(uuid.uuid4())
        await self._spawn(
            short_id, f"scene{scene_number}", job_id,
            self.run_scene(job_id, shop, short_id, scene_number, request),
        )
        self._job_shops[job_id] = shop
        self._update_status(job_id, short_id, WorkflowStep.QUEUED, f"Scene {scene_number} queued", 0)
        return self.get_status(job_id)

    async def regenerate_scene(
        self,
        shop: str,
        short_id: str,
        scene_number: int,
        request: SceneRunRequest,
    ) -> WorkflowJobResponse:
        """Clear one scene (and any final video built from it) and rebuild it."""
        if scene_number not in SCENE_NUMBERS:
            raise ValueError("sceneNumber must be 1, 2, or 3")
        short = short_service.get_short(short_id, shop)
        self._check_not_finalizing(short_id)
        if (short_id, f"scene{scene_number}") in self._running:
            raise ValueError(f"scene{scene_number} is already running")

        short_service.reset_scene(short_id, scene_number)
        if short.get("final_video_url"):
            short_service.save_final_video(short_id, None)
        return await self.start_scene(shop, short_id, scene_number, request)

    # ── Audio & music ────────────────────────────────────────────────────

    async def run_audio(
        self,
        shop: str,
        short_id: str,
        voice_id: str,
        voice_name: Optional[str] = None,
        product_description: str = "",
        script: Optional[str] = None,
    ) -> dict:
        """Script (unless given) → save script → text-to-speech → save audio."""
        if not voice_id.strip():
            raise ValueError("voice_id is required")
        short_service.get_short(short_id, shop)

        if not (script or "").strip():
            generated = await audio.generate_script(voice_id, shop, short_id, product_description)
            script = generated["script"]
        short_service.save_audio_script(short_id, script, voice_id, voice_name)

        result = await audio.generate_audio(voice_id, shop, short_id, script)
        short_service.save_audio(
            short_id, result["audio_url"], result["subtitle_timing"], voice_id, voice_name,
        )
        metrics.inc_counter("workflow.audio_generated")
        return {
            "short_id": short_id,
            "script": script,
            "audio_url": result["audio_url"],
            "duration": result["duration"],
            "subtitles": result["subtitle_timing"],
            "is_cached": result["is_cached"],
        }

    def select_music(self, shop: str, short_id: str, track: Optional[dict]) -> Optional[dict]:
        return short_service.save_bg_music(short_id, track, shop)

    # ── Finalize ─────────────────────────────────────────────────────────

    async def run_finalize(self, job_id: str, shop: str, short_id: str) -> WorkflowJobResponse:
        """Merge the three scenes, audio and music; on failure the Short returns to draft."""
        self._job_shops[job_id] = shop
        try:
            self._update_status(job_id, short_id, WorkflowStep.FINALIZING, "Starting final merge...", 10)
            started = await backend.finalize_short_start(shop, short_id)
            task_id = started["task_id"]

            self._update_status(job_id, short_id, WorkflowStep.FINALIZING, "Merging scenes, voice-over and music...", 40)
            result = await poll_until(
                lambda: backend.finalize_short_status(task_id),
                lambda s: scenes.is_terminal(s["status"]),
                label=f"finalize {task_id}",
            )
            if scenes.is_failed(result["status"]) or not result["final_video_url"]:
                raise RuntimeError(result["error"] or "Final merge failed")

            short_service.save_final_video(short_id, result["final_video_url"])
            self._update_status(
                job_id, short_id, WorkflowStep.COMPLETED,
                "Final video ready", 100, result_url=result["final_video_url"],
            )
            metrics.inc_counter("workflow.finalized")
        except Exception as e:
            logger.error(f"Finalize failed for short {short_id}: {e}", exc_info=True)
            metrics.record_error("finalize", type(e).__name__, str(e), shop)
            short_service.mark_draft(short_id)
            self._update_status(job_id, short_id, WorkflowStep.FAILED, "Final merge failed", error=str(e))
        return self.get_status(job_id)

    async def start_finalize(self, shop: str, short_id: str) -> WorkflowJobResponse:
        """All three scenes must be ready before the final merge starts."""
        short_service.get_short(short_id, shop)

        by_number = {s["scene_number"]: s for s in short_service.list_scenes(short_id)}
        missing = [
            n for n in SCENE_NUMBERS
            if by_number.get(n, {}).get("status") != SceneStatus.READY.value
            or not by_number[n].get("generated_video_url")
        ]
        if missing:
            raise ValueError(f"Scenes not ready: {', '.join(str(n) for n in missing)}")
        building = sorted(unit for unit in self._active_jobs_for(short_id) if unit.startswith("scene"))
        if building:
            raise ValueError(f"Cannot finalize while scenes are running: {', '.join(building)}")

        job_id = str(uuid.uuid4())
        await self._spawn(short_id, "finalize", job_id, self.run_finalize(job_id, shop, short_id))
        self._job_shops[job_id] = shop
        short_service.mark_finalizing(short_id)
        self._update_status(job_id, short_id, WorkflowStep.FINALIZING, "Final merge queued", 0)
        return self.get_status(job_id)

    # ── Save / restore ───────────────────────────────────────────────────

    def restore(self, shop: str, short_id: str) -> dict:
        """
        Everything the wizard needs to resume: saved UI position, per-scene
        progress and completion flags, audio, music, final video and any
        jobs still running.
        """
        short = short_service.get_short(short_id, shop)
        by_number = {s["scene_number"]: s for s in short_service.list_scenes(short_id)}

        snapshot = {
            "shortId": short_id,
            "productId": short.get("product_id"),
            "status": short.get("status"),
            "state": None,
            "scenes": [],
        }
        for n in SCENE_NUMBERS:
            scene = by_number.get(n) or {}
            complete = scene.get("status") == SceneStatus.READY.value and bool(scene.get("generated_video_url"))
            snapshot[f"scene{n}Complete"] = complete
            snapshot["scenes"].append({
                "sceneNumber": n,
                "sceneId": scene.get("id"),
                "status": scene.get("status", SceneStatus.PENDING.value),
                "imageUrl": scene.get("image_url"),
                "bgRemovedUrl": scene.get("bg_removed_url"),
                "backgroundUrl": scene.get("background_url"),
                "compositedUrl": scene.get("composited_url"),
                "generatedVideoUrl": scene.get("generated_video_url"),
                "error": scene.get("error"),
            })
        snapshot["allScenesComplete"] = all(snapshot[f"scene{n}Complete"] for n in SCENE_NUMBERS)

        if short.get("product_id"):
            snapshot["state"] = workflow_temp.get_workflow_temp(shop, short["product_id"])
        if snapshot["state"] is None:
            snapshot["state"] = workflow_temp.normalize_state(None)

        info = short_service.get_audio_info(short_id)
        snapshot["audio"] = {
            "script": info.get("audio_script"),
            "voiceId": info.get("voice_id"),
            "voiceName": info.get("voice_name"),
            "audioUrl": info.get("generated_audio_url"),
            "subtitles": info.get("subtitles"),
            "status": info.get("status"),
        } if info else None

        snapshot["bgMusic"] = (short.get("metadata") or {}).get("bgMusic")
        snapshot["finalVideoUrl"] = short.get("final_video_url")
        snapshot["activeJobs"] = self._active_jobs_for(short_id)
        return snapshot

    def reset(self, shop: str, short_id: str) -> dict:
        """Start from scratch: clear the Short, its scenes and the saved UI position."""
        short = short_service.get_short(short_id, shop)
        running = self._active_jobs_for(short_id)
        if running:
            raise ValueError(f"Cannot reset while jobs are running: {', '.join(sorted(running))}")

        short_service.reset_short(short_id)
        if short.get("product_id"):
            workflow_temp.delete_workflow_temp(shop, short["product_id"])
        return {"ok": True}

    def complete(self, shop: str, short_id: str) -> dict:
        """'Done': drop the saved UI position and hand back the final video."""
        short = short_service.get_short(short_id, shop)
        if not short.get("final_video_url"):
            raise ValueError("Final video is not ready yet")

        if short.get("product_id"):
            workflow_temp.delete_workflow_temp(shop, short["product_id"])
        return {"ok": True, "finalVideoUrl": short["final_video_url"]}
