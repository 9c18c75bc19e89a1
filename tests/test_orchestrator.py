import asyncio

import pytest

from promonex import backend, photoroom, rate_limiter, remotion
from promonex.http_client import UpstreamError
from promonex.pipeline import short_service, workflow_temp
from promonex.pipeline.models import SceneRunRequest, WorkflowStep
from promonex.pipeline.orchestrator import PromoWorkflowService
from promonex.rate_limiter import CapacityError
from conftest import SHOP

PRODUCT_IMAGE = "https://cdn.shopify.test/boots.jpg"


class Vendors:
    """Records vendor calls and answers like a healthy pipeline."""

    def __init__(self):
        self.calls: list[str] = []
        self.render_status = "completed"
        self.finalize_status = "completed"

    async def remove_background(self, image_url):
        self.calls.append("remove_bg")
        return "https://assets.test/bg_removed_images/cut.png"

    async def extract_background_prompt(self, description, mood=None, style=None, environment=None):
        self.calls.append("extract_prompt")
        return "A sunlit wooden table"

    async def start_background_generation(self, description, user_id, **kwargs):
        self.calls.append(f"background:{kwargs.get('manual_prompt')}")
        return "bg-task"

    async def get_background_generation_status(self, task_id):
        return {"task_id": task_id, "status": "completed", "image_url": "https://a/bg.png", "progress": 100, "error": None}

    async def composite_images(self, background_url, overlay_url, scene_id, user_id):
        self.calls.append("composite")
        return {"success": True, "image_url": "https://a/comp.png"}

    async def start_shopify_video(self, template, image_url, product, user_id, short_id):
        self.calls.append(f"render:{template}")
        return "r-task"

    async def fetch_task_status(self, remotion_task_id):
        if self.render_status == "failed":
            return {"id": remotion_task_id, "status": "failed", "stage": None, "progress": None,
                    "videoUrl": None, "error": "Chromium crashed"}
        return {"id": remotion_task_id, "status": "completed", "stage": "done", "progress": 100,
                "videoUrl": "https://a/scene.mp4", "error": None}

    async def merge_video_start(self, product_image_url, background_video_url, scene_id, user_id, duration=None):
        self.calls.append(f"merge:{duration}")
        return {"task_id": "m-task", "status": "pending"}

    async def merge_video_status(self, task_id):
        return {"status": "completed", "video_url": "https://a/merged.mp4", "error_message": None}

    async def finalize_short_start(self, user_id, short_id):
        self.calls.append("finalize")
        return {"task_id": "f-task"}

    async def finalize_short_status(self, task_id):
        if self.finalize_status == "failed":
            return {"task_id": task_id, "status": "failed", "final_video_url": None, "progress": None, "error": "ffmpeg exited 1"}
        return {"task_id": task_id, "status": "completed", "final_video_url": "https://a/final.mp4", "progress": 100, "error": None}


@pytest.fixture
def vendors(monkeypatch):
    fake = Vendors()
    monkeypatch.setattr(photoroom, "remove_background", fake.remove_background)
    for name in (
        "extract_background_prompt",
        "start_background_generation",
        "get_background_generation_status",
        "composite_images",
        "merge_video_start",
        "merge_video_status",
        "finalize_short_start",
        "finalize_short_status",
    ):
        monkeypatch.setattr(backend, name, getattr(fake, name))
    monkeypatch.setattr(remotion, "start_shopify_video", fake.start_shopify_video)
    monkeypatch.setattr(remotion, "fetch_task_status", fake.fetch_task_status)
    return fake


@pytest.fixture
def service():
    return PromoWorkflowService()


def _scene(short_id, n):
    return short_service.get_scene(short_id, n)


def _mark_all_ready(short):
    for n, scene_id in short["sceneIds"].items():
        short_service.update_scene(scene_id, status="ready", generated_video_url=f"https://a/s{n}.mp4")


# ── Scenes ───────────────────────────────────────────────────────────────────

async def test_image_scene_end_to_end(service, vendors, short):
    request = SceneRunRequest(image_url=PRODUCT_IMAGE, product_description="Leather boots")

    job = await service.run_scene("job-1", SHOP, short["shortId"], 1, request)

    assert job.status == WorkflowStep.COMPLETED
    assert job.result_url == "https://a/scene.mp4"
    assert vendors.calls == [
        "remove_bg", "extract_prompt", "background:A sunlit wooden table", "composite", "render:product-modern-v1",
    ]
    scene = _scene(short["shortId"], 1)
    assert scene["status"] == "ready"
    assert scene["bg_removed_url"].endswith("cut.png")
    assert scene["background_url"] == "https://a/bg.png"
    assert scene["composited_url"] == "https://a/comp.png"
    assert scene["generated_video_url"] == "https://a/scene.mp4"


async def test_scene_three_uses_dynamic_template_and_given_background(service, vendors, short):
    request = SceneRunRequest(
        image_url=PRODUCT_IMAGE, background_source="url", background_url="https://a/studio.png",
    )

    job = await service.run_scene("job-3", SHOP, short["shortId"], 3, request)

    assert job.status == WorkflowStep.COMPLETED
    assert vendors.calls == ["remove_bg", "composite", "render:product-dynamic-v1"]
    assert _scene(short["shortId"], 3)["background_url"] == "https://a/studio.png"


async def test_rerun_resumes_from_saved_assets(service, vendors, short):
    scene_id = short["sceneIds"][1]
    short_service.update_scene(
        scene_id,
        image_url=PRODUCT_IMAGE,
        bg_removed_url="https://a/cut.png",
        background_url="https://a/bg.png",
        composited_url="https://a/comp.png",
        status="failed",
    )

    job = await service.run_scene("job-1", SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))

    assert job.status == WorkflowStep.COMPLETED
    assert vendors.calls == ["render:product-modern-v1"]


async def test_new_image_discards_saved_assets(service, vendors, short):
    short_service.update_scene(
        short["sceneIds"][1],
        image_url="https://cdn.shopify.test/old.jpg",
        bg_removed_url="https://a/old-cut.png",
        composited_url="https://a/old-comp.png",
    )

    request = SceneRunRequest(image_url=PRODUCT_IMAGE, manual_prompt="Marble counter")
    await service.run_scene("job-1", SHOP, short["shortId"], 1, request)

    assert vendors.calls == ["remove_bg", "background:Marble counter", "composite", "render:product-modern-v1"]


async def test_new_background_url_replaces_saved_background(service, vendors, short):
    short_service.update_scene(
        short["sceneIds"][1],
        image_url=PRODUCT_IMAGE,
        bg_removed_url="https://a/cut.png",
        background_url="https://a/old-bg.png",
        composited_url="https://a/old-comp.png",
        status="ready",
    )

    request = SceneRunRequest(
        image_url=PRODUCT_IMAGE, background_source="url", background_url="https://a/new-bg.png",
    )
    job = await service.run_scene("job-1", SHOP, short["shortId"], 1, request)

    assert job.status == WorkflowStep.COMPLETED
    assert vendors.calls == ["composite", "render:product-modern-v1"]
    scene = _scene(short["shortId"], 1)
    assert scene["background_url"] == "https://a/new-bg.png"
    assert scene["composited_url"] == "https://a/comp.png"


async def test_manual_prompt_regenerates_saved_background(service, vendors, short):
    short_service.update_scene(
        short["sceneIds"][3],
        image_url=PRODUCT_IMAGE,
        bg_removed_url="https://a/cut.png",
        background_url="https://a/old-bg.png",
        composited_url="https://a/old-comp.png",
    )

    request = SceneRunRequest(image_url=PRODUCT_IMAGE, manual_prompt="Snowy cabin porch")
    await service.run_scene("job-3", SHOP, short["shortId"], 3, request)

    assert vendors.calls == ["background:Snowy cabin porch", "composite", "render:product-dynamic-v1"]
    assert _scene(short["shortId"], 3)["background_url"] == "https://a/bg.png"


async def test_video_scene(service, vendors, short):
    request = SceneRunRequest(image_url=PRODUCT_IMAGE, background_url="https://stock/clip.mp4")

    job = await service.run_scene("job-2", SHOP, short["shortId"], 2, request)

    assert job.status == WorkflowStep.COMPLETED
    assert job.result_url == "https://a/merged.mp4"
    assert vendors.calls == ["remove_bg", "merge:8"]
    scene = _scene(short["shortId"], 2)
    assert scene["status"] == "ready"
    assert scene["background_url"] == "https://stock/clip.mp4"


async def test_video_scene_requires_stock_video(service, vendors, short):
    job = await service.run_scene("job-2", SHOP, short["shortId"], 2, SceneRunRequest(image_url=PRODUCT_IMAGE))

    assert job.status == WorkflowStep.FAILED
    assert "stock video" in job.error
    assert _scene(short["shortId"], 2)["status"] == "failed"


async def test_render_failure_marks_scene_failed(service, vendors, short):
    vendors.render_status = "failed"

    job = await service.run_scene("job-1", SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))

    assert job.status == WorkflowStep.FAILED
    assert job.error == "Chromium crashed"
    scene = _scene(short["shortId"], 1)
    assert scene["status"] == "failed"
    assert scene["error"] == "Chromium crashed"


async def test_photoroom_failure_marks_scene_failed(monkeypatch, service, vendors, short):
    async def out_of_credits(image_url):
        raise UpstreamError("photoroom", "PhotoRoom API error: 402 credits exhausted", 402)

    monkeypatch.setattr(photoroom, "remove_background", out_of_credits)

    job = await service.run_scene("job-1", SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))

    assert job.status == WorkflowStep.FAILED
    assert "402" in job.error


async def test_start_scene_runs_in_background(service, vendors, short):
    job = await service.start_scene(SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))
    assert job.status == WorkflowStep.QUEUED
    assert rate_limiter.get_active_jobs() == 1

    await asyncio.gather(*service._tasks)

    assert service.get_status(job.job_id).status == WorkflowStep.COMPLETED
    assert rate_limiter.get_active_jobs() == 0
    assert service.restore(SHOP, short["shortId"])["activeJobs"] == {}


async def test_start_scene_rejects_duplicates_and_capacity(monkeypatch, service, vendors, short):
    request = SceneRunRequest(image_url=PRODUCT_IMAGE)
    await service.start_scene(SHOP, short["shortId"], 1, request)

    with pytest.raises(ValueError, match="already running"):
        await service.start_scene(SHOP, short["shortId"], 1, request)

    monkeypatch.setattr(rate_limiter, "acquire_job_slot", lambda: False)
    with pytest.raises(CapacityError, match="capacity"):
        await service.start_scene(SHOP, short["shortId"], 3, request)

    await asyncio.gather(*service._tasks)


async def test_start_scene_validation(service, short):
    with pytest.raises(ValueError, match="sceneNumber"):
        await service.start_scene(SHOP, short["shortId"], 5, SceneRunRequest(image_url=PRODUCT_IMAGE))
    with pytest.raises(PermissionError):
        await service.start_scene("other.myshopify.com", short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))
    with pytest.raises(LookupError):
        service.get_status("unknown-job")


async def test_regenerate_scene_clears_final_video(service, vendors, short):
    _mark_all_ready(short)
    short_service.save_final_video(short["shortId"], "https://a/final.mp4")

    job = await service.regenerate_scene(SHOP, short["shortId"], 3, SceneRunRequest(image_url=PRODUCT_IMAGE))
    assert job.status == WorkflowStep.QUEUED
    assert short_service.get_short(short["shortId"])["final_video_url"] is None
    assert short_service.get_short(short["shortId"])["status"] == "draft"

    await asyncio.gather(*service._tasks)
    assert service.get_status(job.job_id).status == WorkflowStep.COMPLETED


async def test_scene_changes_refused_while_finalizing(service, vendors, short):
    _mark_all_ready(short)
    await service.start_finalize(SHOP, short["shortId"])

    request = SceneRunRequest(image_url=PRODUCT_IMAGE)
    with pytest.raises(ValueError, match="Final merge is running"):
        await service.regenerate_scene(SHOP, short["shortId"], 3, request)
    with pytest.raises(ValueError, match="Final merge is running"):
        await service.start_scene(SHOP, short["shortId"], 1, request)
    assert _scene(short["shortId"], 3)["generated_video_url"] == "https://a/s3.mp4"

    await asyncio.gather(*service._tasks)
    row = short_service.get_short(short["shortId"])
    assert row["status"] == "ready"
    assert row["final_video_url"] == "https://a/final.mp4"


async def test_finalize_refused_while_scene_running(service, vendors, short):
    _mark_all_ready(short)
    await service.start_scene(SHOP, short["shortId"], 2, SceneRunRequest(
        image_url=PRODUCT_IMAGE, background_url="https://stock/clip.mp4",
    ))

    with pytest.raises(ValueError, match="Cannot finalize while scenes are running: scene2"):
        await service.start_finalize(SHOP, short["shortId"])

    await asyncio.gather(*service._tasks)


async def test_job_status_is_private_to_its_shop(service, vendors, short):
    job = await service.start_scene(SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))

    assert service.get_status(job.job_id, SHOP).job_id == job.job_id
    with pytest.raises(LookupError, match="Job not found"):
        service.get_status(job.job_id, "other.myshopify.com")

    await asyncio.gather(*service._tasks)


# ── Audio & music ────────────────────────────────────────────────────────────

async def test_run_audio_generates_script_then_voice(monkeypatch, service, short):
    from promonex import audio

    async def generate_script(voice_id, user_id, short_id, product_description=""):
        assert product_description == "Leather boots"
        return {"script": "Step into comfort."}

    async def generate_audio(voice_id, user_id, short_id, script):
        return {
            "audio_url": "/static/audio/a.mp3", "duration": 21.0,
            "subtitle_timing": [{"text": "Step"}], "is_cached": False,
        }

    monkeypatch.setattr(audio, "generate_script", generate_script)
    monkeypatch.setattr(audio, "generate_audio", generate_audio)

    result = await service.run_audio(SHOP, short["shortId"], "v1", "Rachel", "Leather boots")

    assert result["script"] == "Step into comfort."
    assert result["audio_url"] == "/static/audio/a.mp3"
    info = short_service.get_audio_info(short["shortId"])
    assert info["status"] == "ready"
    assert info["voice_name"] == "Rachel"


async def test_run_audio_requires_voice(service, short):
    with pytest.raises(ValueError, match="voice_id is required"):
        await service.run_audio(SHOP, short["shortId"], "  ")


def test_select_music(service, short):
    saved = service.select_music(SHOP, short["shortId"], {"id": "Corporate/Angles", "title": "Angles", "genre": "Corporate"})
    assert saved["genre"] == "Corporate"
    assert service.restore(SHOP, short["shortId"])["bgMusic"] == saved


# ── Finalize ─────────────────────────────────────────────────────────────────

async def test_finalize_requires_ready_scenes(service, short):
    short_service.update_scene(short["sceneIds"][1], status="ready", generated_video_url="https://a/s1.mp4")

    with pytest.raises(ValueError, match="Scenes not ready: 2, 3"):
        await service.start_finalize(SHOP, short["shortId"])


async def test_finalize_success(service, vendors, short):
    _mark_all_ready(short)

    job = await service.start_finalize(SHOP, short["shortId"])
    assert short_service.get_short(short["shortId"])["status"] == "finalizing"

    await asyncio.gather(*service._tasks)

    done = service.get_status(job.job_id)
    assert done.status == WorkflowStep.COMPLETED
    assert done.result_url == "https://a/final.mp4"
    row = short_service.get_short(short["shortId"])
    assert row["status"] == "ready"
    assert row["final_video_url"] == "https://a/final.mp4"


async def test_finalize_failure_returns_short_to_draft(service, vendors, short):
    _mark_all_ready(short)
    vendors.finalize_status = "failed"

    job = await service.run_finalize("job-f", SHOP, short["shortId"])

    assert job.status == WorkflowStep.FAILED
    assert job.error == "ffmpeg exited 1"
    assert short_service.get_short(short["shortId"])["status"] == "draft"


# ── Save / restore ───────────────────────────────────────────────────────────

def test_restore_snapshot(service, short):
    short_id = short["shortId"]
    short_service.update_scene(short["sceneIds"][1], status="ready", generated_video_url="https://a/s1.mp4")
    workflow_temp.save_workflow_temp(SHOP, "gid://shopify/Product/1", {"activeTab": "scene2", "extra": 1})

    snapshot = service.restore(SHOP, short_id)

    assert snapshot["state"] == {"activeTab": "scene2", "showingFinal": False}
    assert snapshot["scene1Complete"] is True
    assert snapshot["scene2Complete"] is False
    assert snapshot["allScenesComplete"] is False
    assert [s["sceneNumber"] for s in snapshot["scenes"]] == [1, 2, 3]
    assert snapshot["audio"] is None
    assert snapshot["finalVideoUrl"] is None


def test_restore_without_saved_position(service, short):
    assert service.restore(SHOP, short["shortId"])["state"] == {"activeTab": "scene1", "showingFinal": False}


def test_reset_and_complete(service, short):
    short_id = short["shortId"]
    workflow_temp.save_workflow_temp(SHOP, "gid://shopify/Product/1", {"showingFinal": True})

    with pytest.raises(ValueError, match="Final video is not ready yet"):
        service.complete(SHOP, short_id)

    short_service.save_final_video(short_id, "https://a/final.mp4")
    assert service.complete(SHOP, short_id) == {"ok": True, "finalVideoUrl": "https://a/final.mp4"}
    assert workflow_temp.get_workflow_temp(SHOP, "gid://shopify/Product/1") is None

    assert service.reset(SHOP, short_id) == {"ok": True}
    assert short_service.get_short(short_id)["final_video_url"] is None


async def test_reset_refused_while_running(service, vendors, short):
    await service.start_scene(SHOP, short["shortId"], 1, SceneRunRequest(image_url=PRODUCT_IMAGE))

    with pytest.raises(ValueError, match="Cannot reset while jobs are running: scene1"):
        service.reset(SHOP, short["shortId"])

    await asyncio.gather(*service._tasks)
