import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

load_dotenv()
logging.basicConfig(level=logging.INFO)

from . import metrics, rate_limiter
from .api import api_router
from .auth_middleware import AppAuthMiddleware
from .pipeline import shorts_router, workflow_router
from .storage import public_dir

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("PromoNex worker starting up...")
    metrics.set_gauge("start_time", time.time())
    yield
    logger.info("PromoNex worker shutting down...")


app = FastAPI(title="PromoNex", lifespan=lifespan)
app.add_middleware(AppAuthMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o for o in os.environ.get("CORS_ORIGINS", "").split(",") if o],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
app.include_router(shorts_router)
app.include_router(workflow_router)


@app.get("/health")
def health_check():
    """Verify the worker is running and which integrations are configured."""
    return {
        "status": "ok",
        "backend_configured": bool(os.environ.get("BACKEND_URL")),
        "remotion_configured": bool(os.environ.get("REMOTION_URL")),
        "photoroom_configured": bool(os.environ.get("PHOTOROOM_API_KEY")),
        "elevenlabs_configured": bool(os.environ.get("ELEVENLABS_API_KEY")),
        "storyblocks_configured": bool(
            os.environ.get("STORYBLOCKS_API_KEY") and os.environ.get("STORYBLOCKS_API_SECRET")
        ),
        "supabase_configured": bool(
            os.environ.get("SUPABASE_URL") and os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        ),
    }


@app.get("/metrics")
def metrics_endpoint():
    """Return a snapshot of all worker metrics."""
    metrics.set_gauge("active_jobs", rate_limiter.get_active_jobs())
    return metrics.get_snapshot()


# Background-removed images and the local music library; mounted last so the
# API routes take precedence.
_public = public_dir()
_public.mkdir(parents=True, exist_ok=True)
app.mount("/", StaticFiles(directory=str(_public)), name="public")


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "8000")))
